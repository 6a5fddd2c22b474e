"""Log output for the ledger tools.

Library modules log through stdlib ``logging`` with %-style messages;
commands log named events through structlog.  ``setup_logging`` sends
both through one processor chain, so every line is rendered alike and,
inside a ``ledger_operation`` block, carries that operation's name and id.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog

from chunk_ledger.core.ids import new_id

_operation: ContextVar[tuple[str, str] | None] = ContextVar("ledger_operation", default=None)


def current_operation() -> tuple[str, str] | None:
    """``(name, id)`` of the ledger operation in progress, if any."""
    return _operation.get()


@contextmanager
def ledger_operation(name: str) -> Iterator[str]:
    """Tag log lines emitted in the block with *name* and a fresh id."""
    operation_id = new_id()
    token = _operation.set((name, operation_id))
    try:
        yield operation_id
    finally:
        _operation.reset(token)


def _tag_operation(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    current = _operation.get()
    if current is not None:
        event_dict.setdefault("operation", current[0])
        event_dict.setdefault("operation_id", current[1])
    return event_dict


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install one stderr handler on the root logger.

    *fmt* is ``json`` for one object per line, anything else for
    structlog's console renderer.  Unknown level names fall back to INFO.
    """
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _tag_operation,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    )

    # structlog events stop at wrap_for_formatter; the handler renders them
    # together with plain stdlib records.
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
