from __future__ import annotations

from typing import Generator

from fastapi import Header

from shopstock.app.db.session import SessionLocal
from shopstock.services.audit import AuditSink, DatabaseAuditSink


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_audit_sink() -> AuditSink:
    return DatabaseAuditSink(SessionLocal)


def get_actor_id(x_actor_id: str | None = Header(default=None, alias="X-Actor-Id")) -> str | None:
    # l'auth est gérée en amont ; on ne fait que propager l'identifiant
    if x_actor_id and x_actor_id.strip():
        return x_actor_id.strip()[:64]
    return None
