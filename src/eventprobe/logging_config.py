# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run logging: structlog over the stdlib ``logging`` tree.

Modules log through ``logging.getLogger(__name__)``. Records from every
logger, third-party ones included, go through structlog's ProcessorFormatter
so the context bound by the scheduler (``run_id``, ``page_id``) lands on
each line.

Two output shapes:

* console (default), for interactive runs: ``[t7] Rendered https://...``
* JSON lines (``eventprobe run --json-logs``), for batch runs: one object per
  record, ``run_id``/``page_id`` as keys, tracebacks as structured frames

Leaf module — no eventprobe imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty at INFO: one line per HTTP request or SDK retry
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic")


def _prefix_page_id(logger, method_name, event_dict):
    """Console only: fold the bound page id into the message."""
    page_id = event_dict.pop("page_id", None)
    if page_id is not None:
        event_dict["event"] = f"[{page_id}] {event_dict.get('event', '')}"
    return event_dict


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Configure structlog with stdlib bridge for one eventprobe process.

    Args:
        json_output: True for JSON lines (batch runs), False for console output.
        level: Root logger level (default INFO). Unknown names fall back to INFO.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        render_chain: list = [
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        # ConsoleRenderer formats exc_info itself
        render_chain = [_prefix_page_id, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render_chain],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
