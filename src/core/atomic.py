"""
Atomic — all-or-nothing исполнение операций

Каждая операция либо завершается полностью, либо откатывает ВСЕ изменения,
включая уже выполненные state flips (effects-before-interactions) и
изменения во внешних участниках, поддерживающих Journaled.

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. Исключение внутри atomic() восстанавливает снапшоты всех участников
2. Повторный вход в операцию под NonReentrant отклоняется ReentrantCall
3. Флаг guard снимается только тем вызовом, который его поставил
"""

import functools
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Tuple, TypeVar

from src.core.errors import ReentrantCall
from src.core.ports import Journaled


logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


# =============================================================================
# ATOMIC SCOPE
# =============================================================================


@contextmanager
def atomic(*participants: object) -> Iterator[None]:
    """
    Атомарная область: откат всех Journaled участников при исключении.

    Участники без snapshot/restore игнорируются (внешние системы,
    которые откатываются сами).
    """
    saved: List[Tuple[Journaled, object]] = [
        (p, p.snapshot()) for p in participants if isinstance(p, Journaled)
    ]
    try:
        yield
    except BaseException:
        for participant, state in reversed(saved):
            participant.restore(state)
        raise


def transactional(method: F) -> F:
    """
    Декоратор метода: тело исполняется в atomic(*self._participants()).
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with atomic(*self._participants()):
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


# =============================================================================
# REENTRANCY GUARD
# =============================================================================


class NonReentrant:
    """Флаг на весь компонент: одна защищённая операция за раз."""

    def __init__(self, name: str):
        self.name = name
        self._entered = False

    @property
    def entered(self) -> bool:
        return self._entered

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        if self._entered:
            logger.warning("reentrant call rejected: %s.%s", self.name, operation)
            raise ReentrantCall(f"{self.name}.{operation}: reentrant call")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False


def non_reentrant(method: F) -> F:
    """Декоратор метода: self._guard удерживается на время вызова."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._guard.hold(method.__name__):
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]
