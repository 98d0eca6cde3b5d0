"""Run-scoped observability helpers for classification sessions.

Every call to ``classify`` runs inside :func:`session_scope`, so log records
emitted anywhere in the pipeline can be correlated through ``run_id``.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

_run_id_ctx: ContextVar[Optional[str]] = ContextVar("tariffsense_run_id", default=None)


def new_run_id() -> str:
    return uuid.uuid4().hex[:16]


def current_run_id() -> Optional[str]:
    """Return the run_id bound to the current session, if any."""

    return _run_id_ctx.get()


@contextmanager
def session_scope(run_id: Optional[str] = None) -> Iterator[str]:
    """Bind a run_id for the duration of one classification session."""

    value = run_id or new_run_id()
    token = _run_id_ctx.set(value)
    started = time.monotonic()
    try:
        yield value
    finally:
        logger.debug("session %s finished in %.3fs", value, time.monotonic() - started)
        _run_id_ctx.reset(token)


def redact_api_key(key: Optional[str], visible: int = 4) -> str:
    """Keep the first ``visible`` characters of a credential; mask the rest."""

    if key is None or key == "":
        return "<missing>"
    shown = key[:visible] if len(key) >= visible else ""
    return shown + "***"


def log_event(event: str, **fields: object) -> None:
    """Log ``event`` at INFO with the session run_id and ``fields`` as extras."""

    logger.info(
        "%s [run %s] %s",
        event,
        current_run_id() or "-",
        " ".join(f"{name}={value}" for name, value in sorted(fields.items())),
        extra={"run_id": current_run_id(), "fields": fields},
    )
