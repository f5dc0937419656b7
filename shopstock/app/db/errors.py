from __future__ import annotations

from sqlalchemy.exc import DBAPIError

# lock_not_available, serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"55P03", "40001", "40P01"}


def is_lock_error(exc: DBAPIError) -> bool:
    """Timeout de verrou / conflit de sérialisation : l'opération peut être rejouée."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) in _RETRYABLE_SQLSTATES:
        return True
    # SQLite
    return "database is locked" in str(orig or exc).lower()
