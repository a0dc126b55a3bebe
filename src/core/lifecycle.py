"""Lifecycle — таблицы переходов для session / intent state machines.

Session: CLOSED → OPEN → {SETTLED | CANCELLED}
- Терминальное состояние не переоткрывается: новый open_session создаёт
  новую сессию (ключ снова проходит через CLOSED)

Intent: CREATED → {EXECUTED | CANCELLED}
- Ровно один успешный выход из CREATED
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Union

from src.core.domain.intent import IntentStatus
from src.core.domain.session import SessionStatus
from src.core.errors import InvalidTransition


SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.CLOSED: frozenset({SessionStatus.OPEN}),
    SessionStatus.OPEN: frozenset({SessionStatus.SETTLED, SessionStatus.CANCELLED}),
    # Терминальные состояния: повторный open идёт через новую запись
    SessionStatus.SETTLED: frozenset({SessionStatus.OPEN}),
    SessionStatus.CANCELLED: frozenset({SessionStatus.OPEN}),
}

INTENT_TRANSITIONS: Dict[IntentStatus, FrozenSet[IntentStatus]] = {
    IntentStatus.CREATED: frozenset({IntentStatus.EXECUTED, IntentStatus.CANCELLED}),
    IntentStatus.EXECUTED: frozenset(),
    IntentStatus.CANCELLED: frozenset(),
}

Status = Union[SessionStatus, IntentStatus]


@dataclass(frozen=True)
class TransitionResult:
    """Результат перехода состояния."""

    previous_state: Status
    new_state: Status
    transition_reason: str

    # Для отладки
    details: str = ""


def _table_for(state: Status) -> Dict:
    if isinstance(state, SessionStatus):
        return SESSION_TRANSITIONS
    return INTENT_TRANSITIONS


def is_terminal(state: Status) -> bool:
    """Терминальное состояние: SETTLED/CANCELLED (session), EXECUTED/CANCELLED (intent)."""
    if isinstance(state, SessionStatus):
        return state in (SessionStatus.SETTLED, SessionStatus.CANCELLED)
    return not INTENT_TRANSITIONS[state]


def can_transition(current: Status, target: Status) -> bool:
    if type(current) is not type(target):
        return False
    return target in _table_for(current)[current]


def ensure_transition(current: Status, target: Status, reason: str, details: str = "") -> TransitionResult:
    """
    Проверка и фиксация перехода.

    Args:
        current: текущее состояние
        target: целевое состояние
        reason: машинно-читаемая причина (snake_case)
        details: свободный текст для логов

    Returns:
        TransitionResult

    Raises:
        InvalidTransition: переход не разрешён таблицей
    """
    if not can_transition(current, target):
        raise InvalidTransition(f"{current.value} → {target.value} is not allowed ({reason})")
    return TransitionResult(
        previous_state=current,
        new_state=target,
        transition_reason=reason,
        details=details,
    )
