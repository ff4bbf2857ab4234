import os
import sys
import logging

import pytest
import requests

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import revalidation
from compensation import CompensationLog
from revalidation import PathRevalidator, WebhookNotifier, session_path, vault_path


def test_compensation_undoes_newest_first():
    undone = []
    with pytest.raises(RuntimeError, match="boom"):
        with CompensationLog("demo") as log:
            a = log.run("a", lambda: 1, lambda r: undone.append(("a", r)))
            log.run("b", lambda: a + 1, lambda r: undone.append(("b", r)))
            raise RuntimeError("boom")
    assert undone == [("b", 2), ("a", 1)]


def test_compensation_keeps_work_on_success():
    undone = []
    with CompensationLog("demo") as log:
        log.run("a", lambda: 1, lambda r: undone.append(r))
    log.rollback()
    assert undone == []


def test_compensation_logs_failed_undo(caplog):
    undone = []

    def broken(_):
        raise OSError("locked")

    with caplog.at_level(logging.ERROR, logger="compensation"):
        with pytest.raises(KeyError):
            with CompensationLog("demo") as log:
                log.run("first", lambda: 1, lambda r: undone.append(r))
                log.run("second", lambda: 2, broken)
                raise KeyError("missing")
    assert undone == [1]
    assert "second" in caplog.text


def test_revalidator_notifies_listeners():
    seen = []
    revalidator = PathRevalidator()
    revalidator.add_listener(seen.append)
    revalidator.mark_stale(vault_path(1), session_path(1, 7))
    assert seen == ["/v/1", "/v/1/sessions/7"]
    assert revalidator.drain() == ["/v/1", "/v/1/sessions/7"]
    assert revalidator.drain() == []


def test_pending_paths_are_bounded():
    seen = []
    revalidator = PathRevalidator(max_pending=3)
    revalidator.add_listener(seen.append)
    for i in range(10):
        revalidator.mark_stale(vault_path(i))
    assert len(seen) == 10
    assert revalidator.drain() == ["/v/7", "/v/8", "/v/9"]


def test_failing_listener_does_not_block_others(caplog):
    seen = []

    def broken(path):
        raise RuntimeError("down")

    revalidator = PathRevalidator()
    revalidator.add_listener(broken)
    revalidator.add_listener(seen.append)
    with caplog.at_level(logging.ERROR, logger="revalidation"):
        revalidator.mark_stale("/v/2")
    assert seen == ["/v/2"]
    assert "revalidation listener failed" in caplog.text


class DummyResponse:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_webhook_posts_path_and_secret(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers, timeout))
        return DummyResponse()

    monkeypatch.setattr(revalidation.requests, "post", fake_post)
    WebhookNotifier("http://hooks.local/revalidate", "s3cret", timeout=2)("/v/1")
    assert calls == [
        (
            "http://hooks.local/revalidate",
            {"path": "/v/1"},
            {"X-Revalidate-Secret": "s3cret"},
            2,
        )
    ]


def test_webhook_errors_are_logged(monkeypatch, caplog):
    monkeypatch.setattr(
        revalidation.requests, "post", lambda *a, **k: DummyResponse(503)
    )
    with caplog.at_level(logging.WARNING, logger="revalidation"):
        WebhookNotifier("http://hooks.local/revalidate")("/v/1/sessions")
    assert "revalidation webhook failed for /v/1/sessions" in caplog.text

    def refused(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(revalidation.requests, "post", refused)
    WebhookNotifier("http://hooks.local/revalidate")("/v/1")
