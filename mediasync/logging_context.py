from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import Any

import sentry_sdk

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


class RunContextFilter(logging.Filter):
    """Inject the current run id and command into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get({})
        record.run_id = context.get("run_id")
        record.command = context.get("command")
        return True


def push_run_context(run_id: str, command: str) -> Token:
    sentry_sdk.set_tag("run_id", run_id)
    sentry_sdk.set_tag("command", command)
    return _log_context.set({"run_id": run_id, "command": command})


def pop_run_context(token: Token) -> None:
    _log_context.reset(token)


def init_error_reporting(dsn: str | None) -> bool:
    if not dsn:
        return False
    sentry_sdk.init(dsn=dsn, traces_sample_rate=0.0)
    return True


def _sentry_enabled() -> bool:
    return sentry_sdk.get_client().is_active()


def capture_run_abort(exc: BaseException, *, state: str) -> None:
    if not _sentry_enabled():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("run_state", state)
        context = getattr(exc, "context", None)
        if context:
            scope.set_context("mediasync", dict(context))
        sentry_sdk.capture_exception(exc)


__all__ = [
    "RunContextFilter",
    "capture_run_abort",
    "init_error_reporting",
    "pop_run_context",
    "push_run_context",
]
