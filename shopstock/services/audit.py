"""
Historique des actions (audit).

Fire-and-forget du point de vue métier : l'événement est émis APRÈS le commit
de l'opération. Un échec d'écriture est loggé, jamais propagé, et ne défait
jamais la transaction métier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from shopstock.app.core.logging_config import get_logger
from shopstock.app.db.models.core_types import ActionType
from shopstock.app.db.models.models_v1 import ActionHistory

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditEvent:
    action_type: ActionType
    entity_id: str
    entity_name: str | None
    description: str
    entity_type: str = "restocking"
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    shop_id: int | None = None
    actor_id: str | None = None


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class DatabaseAuditSink:
    """Écrit dans ``action_history`` avec sa propre session (transaction séparée)."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        db = self._session_factory()
        try:
            db.add(
                ActionHistory(
                    shop_id=event.shop_id,
                    actor_id=event.actor_id,
                    action_type=ActionType(event.action_type),
                    entity_type=event.entity_type,
                    entity_id=str(event.entity_id),
                    entity_name=event.entity_name,
                    description=event.description,
                    old_data=event.old_data,
                    new_data=event.new_data,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


@dataclass
class MemoryAuditSink:
    events: list[AuditEvent] = field(default_factory=list)

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


def emit(sink: AuditSink | None, event: AuditEvent) -> bool:
    """Livre l'événement ; retourne False si le sink a échoué (erreur loggée)."""
    if sink is None:
        return False
    try:
        sink.record(event)
    except Exception:
        logger.exception(
            "audit delivery failed",
            extra={
                "action_type": getattr(event.action_type, "value", event.action_type),
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
            },
        )
        return False
    return True
