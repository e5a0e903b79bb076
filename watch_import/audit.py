import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def add_audit_log(
    db: AsyncSession,
    *,
    action: str,
    message: str,
    actor_user_id: uuid.UUID | None = None,
    import_job_id: int | None = None,
    reason: str | None = None,
) -> None:
    db.add(
        AuditLog(
            action=action,
            message=message,
            reason=_normalize_reason(reason),
            actor_user_id=actor_user_id,
            import_job_id=import_job_id,
        )
    )
