"""
Events — audit log escrow-компонентов

Каждое событие — immutable AuditEvent, проверяется по схеме audit_event
перед добавлением. EventLog участвует в atomic(): откат операции
удаляет и её события.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, Field

from src.core.contracts import validate_audit_event


logger = logging.getLogger(__name__)

PayloadValue = Union[str, int, bool, None]


class AuditEvent(BaseModel):
    """Запись audit log."""

    seq: int = Field(..., ge=0, description="Монотонный номер события")
    name: str = Field(..., min_length=1, description="Имя события (например, 'SessionOpened')")
    ts: int = Field(..., ge=0, description="Время события (unix sec)")
    emitter: str = Field(..., min_length=1, description="Компонент-источник")
    payload: Dict[str, PayloadValue] = Field(default_factory=dict)

    model_config = {"frozen": True}


class EventLog:
    """Append-only журнал AuditEvent."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def emit(self, name: str, ts: int, emitter: str, **payload: Any) -> AuditEvent:
        """
        Добавление события.

        Raises:
            jsonschema.ValidationError: имя или payload не соответствуют схеме
        """
        event = AuditEvent(
            seq=len(self._events),
            name=name,
            ts=ts,
            emitter=emitter,
            payload=payload,
        )
        validate_audit_event(event.model_dump(mode="json"))
        self._events.append(event)
        logger.info("event %s #%d from %s: %s", name, event.seq, emitter, payload)
        return event

    def events(self, name: Optional[str] = None) -> List[AuditEvent]:
        if name is None:
            return list(self._events)
        return [e for e in self._events if e.name == name]

    def last(self, name: Optional[str] = None) -> Optional[AuditEvent]:
        matching = self.events(name)
        return matching[-1] if matching else None

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[AuditEvent]:
        return iter(list(self._events))

    # Journaled

    def snapshot(self) -> int:
        return len(self._events)

    def restore(self, state: int) -> None:
        del self._events[state:]
