import logging
from collections import deque
from typing import Callable, Deque, List

import requests

logger = logging.getLogger(__name__)


def vault_path(vault_id: int) -> str:
    return f"/v/{vault_id}"


def sessions_path(vault_id: int) -> str:
    return f"/v/{vault_id}/sessions"


def session_path(vault_id: int, session_id: int) -> str:
    return f"/v/{vault_id}/sessions/{session_id}"


def template_path(vault_id: int, template_id: int) -> str:
    return f"/v/{vault_id}/templates/{template_id}"


def exercises_path(vault_id: int) -> str:
    return f"/v/{vault_id}/exercises"


class PathRevalidator:
    """Forwards "path is stale" signals to listeners.

    The most recent ``max_pending`` paths are also buffered for ``drain``.
    """

    def __init__(self, max_pending: int = 256) -> None:
        self.stale: Deque[str] = deque(maxlen=max_pending)
        self._listeners: List[Callable[[str], None]] = []

    def add_listener(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def mark_stale(self, *paths: str) -> None:
        for path in paths:
            self.stale.append(path)
            logger.debug("stale: %s", path)
            for listener in self._listeners:
                try:
                    listener(path)
                except Exception:
                    logger.exception("revalidation listener failed for %s", path)

    def drain(self) -> List[str]:
        paths = list(self.stale)
        self.stale.clear()
        return paths


class WebhookNotifier:
    """Listener that POSTs each stale path to a configured URL."""

    def __init__(self, url: str, secret: str | None = None, timeout: float = 5.0) -> None:
        self.url = url
        self.secret = secret
        self.timeout = timeout

    def __call__(self, path: str) -> None:
        headers = {}
        if self.secret:
            headers["X-Revalidate-Secret"] = self.secret
        try:
            resp = requests.post(
                self.url, json={"path": path}, headers=headers, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("revalidation webhook failed for %s: %s", path, e)
