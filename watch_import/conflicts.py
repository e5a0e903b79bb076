from .schemas import ConflictStrategy


def should_update(existing: float | None, incoming: float | None, strategy: ConflictStrategy) -> bool:
    """Decide whether an imported rating replaces the one already in the library."""
    if incoming is None:
        return False
    if existing is None:
        return True
    if existing == incoming:
        return False
    if strategy == "overwrite":
        return True
    if strategy == "keep_higher_rating":
        return incoming > existing
    return False
