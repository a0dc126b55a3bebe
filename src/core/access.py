"""
AccessControl — доверенные identity компонента

owner: административная identity (обновление ролей, override отмены/исполнения)
roles: доверенные singletons (relayer для сессий, executor для intents,
       oracle для portfolio agent)

Роли не захардкожены: каждая меняется только owner'ом через явную операцию,
каждое изменение пишется в audit log.
"""

import logging
from typing import Dict, Optional

from src.core.errors import Unauthorized
from src.core.events import EventLog


logger = logging.getLogger(__name__)

# Имя события audit log для каждой роли
ROLE_EVENTS: Dict[str, str] = {
    "relayer": "RelayerUpdated",
    "executor": "ExecutorUpdated",
    "oracle": "OracleUpdated",
}


class AccessControl:
    """Owner + именованные роли."""

    def __init__(
        self,
        owner: str,
        event_log: EventLog,
        emitter: str,
        **roles: str,
    ):
        if not owner:
            raise ValueError("owner must be non-empty")
        unknown = set(roles) - set(ROLE_EVENTS)
        if unknown:
            raise ValueError(f"Unknown roles: {sorted(unknown)}")
        self._owner = owner
        self._roles: Dict[str, str] = dict(roles)
        self._event_log = event_log
        self._emitter = emitter

    @property
    def owner(self) -> str:
        return self._owner

    def holder(self, role: str) -> Optional[str]:
        return self._roles.get(role)

    def is_owner(self, caller: str) -> bool:
        return caller == self._owner

    def has_role(self, role: str, caller: str) -> bool:
        return self._roles.get(role) == caller

    def require_owner(self, caller: str, action: str) -> None:
        if not self.is_owner(caller):
            logger.warning("%s: %s rejected for non-owner %s", self._emitter, action, caller)
            raise Unauthorized(f"{action}: caller {caller} is not the owner")

    def require_role(self, role: str, caller: str, action: str, allow_owner: bool = False) -> None:
        if self.has_role(role, caller):
            return
        if allow_owner and self.is_owner(caller):
            return
        logger.warning("%s: %s rejected for %s (not %s)", self._emitter, action, caller, role)
        raise Unauthorized(f"{action}: caller {caller} is not the {role}")

    def update_role(self, caller: str, role: str, new_holder: str, ts: int) -> None:
        """
        Замена holder роли (только owner).

        Raises:
            Unauthorized: caller не owner
            ValueError: неизвестная роль или пустой адрес
        """
        self.require_owner(caller, f"update_{role}")
        if role not in ROLE_EVENTS:
            raise ValueError(f"Unknown role: {role}")
        if not new_holder:
            raise ValueError(f"{role} must be non-empty")
        previous = self._roles.get(role)
        self._roles[role] = new_holder
        self._event_log.emit(
            ROLE_EVENTS[role],
            ts=ts,
            emitter=self._emitter,
            previous=previous,
            current=new_holder,
        )

    def transfer_ownership(self, caller: str, new_owner: str, ts: int) -> None:
        self.require_owner(caller, "transfer_ownership")
        if not new_owner:
            raise ValueError("new owner must be non-empty")
        previous = self._owner
        self._owner = new_owner
        self._event_log.emit(
            "OwnershipTransferred",
            ts=ts,
            emitter=self._emitter,
            previous=previous,
            current=new_owner,
        )

    # Journaled

    def snapshot(self) -> tuple:
        return self._owner, dict(self._roles)

    def restore(self, state: tuple) -> None:
        self._owner, roles = state
        self._roles = dict(roles)
