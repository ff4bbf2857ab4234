import logging
from typing import Callable, List, Tuple

logger = logging.getLogger(__name__)


class CompensationLog:
    """Forward action list with paired undo actions.

    Each successful step registers how to reverse it. If a later step fails,
    :meth:`rollback` runs the registered undos newest-first. Undo failures
    are logged and never replace the original error.
    """

    def __init__(self, label: str = "operation") -> None:
        self.label = label
        self._undo: List[Tuple[str, Callable[[], None]]] = []

    def record(self, description: str, undo: Callable[[], None]) -> None:
        self._undo.append((description, undo))

    def run(self, description: str, action: Callable, undo: Callable) -> object:
        """Run ``action`` and register ``undo(result)`` for it."""
        result = action()
        self.record(description, lambda: undo(result))
        return result

    def rollback(self) -> None:
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
            except Exception:
                logger.exception(
                    "compensation step failed during %s: %s", self.label, description
                )

    def __enter__(self) -> "CompensationLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning("%s failed, undoing %d step(s)", self.label, len(self._undo))
            self.rollback()
        else:
            self._undo.clear()
        return False
