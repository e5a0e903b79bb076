from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ImportSource = Literal["letterboxd", "trakt", "imdb", "csv"]
ImportJobStatus = Literal["pending", "processing", "completed", "failed"]
ImportItemStatus = Literal["success", "failed", "skipped"]
ResultAction = Literal["created", "updated", "skipped_existing"]
MatchConfidence = Literal["exact", "fuzzy", "failed"]
ConflictStrategy = Literal["skip", "overwrite", "keep_higher_rating"]
MediaKind = Literal["movie", "tv"]

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed"})


class ImportItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1, max_length=500)
    year: int | None = Field(default=None, ge=1870, le=2200)
    # Normalized 1-5 scale; this is what lands in the library.
    rating: float | None = Field(default=None, ge=0, le=5)
    original_rating: float | None = None
    status: Literal["watchlist", "watched"] | None = None
    is_rewatch: bool = False
    watched_date: str | None = Field(default=None, max_length=40)
    tags: tuple[str, ...] = ()


class ImportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    conflict_strategy: ConflictStrategy = "skip"
    import_ratings: bool = True
    import_watchlist: bool = True
    import_watched: bool = True
    mark_rewatch_as_tag: bool = True


@dataclass(frozen=True)
class MatchResult:
    catalog_id: int
    matched_title: str
    year: int
    poster_path: str | None
    confidence: MatchConfidence
    score: float
    media_kind: MediaKind = "movie"


@dataclass(frozen=True)
class ItemResult:
    status: ImportItemStatus
    action: ResultAction | None = None
    catalog_id: int | None = None
    matched_title: str | None = None
    match_confidence: MatchConfidence | None = None
    error_message: str | None = None

    @classmethod
    def from_match(
        cls,
        match: MatchResult,
        status: ImportItemStatus,
        action: ResultAction | None = None,
        error_message: str | None = None,
    ) -> "ItemResult":
        return cls(
            status=status,
            action=action,
            catalog_id=match.catalog_id,
            matched_title=match.matched_title,
            match_confidence=match.confidence,
            error_message=error_message,
        )


@dataclass
class JobCounters:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, result: ItemResult) -> None:
        self.processed += 1
        if result.status == "success":
            self.successful += 1
        elif result.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
