"""Logging setup for Folio.

Folio modules log through logging.getLogger(__name__). configure_logging
installs one stderr handler on the root logger whose formatter is a
structlog ProcessorFormatter, so build and watch messages come out either
as console lines or, with --log-json, as one JSON object per line.
"""

from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(*, verbose: bool = False, log_json: bool = False) -> None:
    """Route Folio's log records to stderr.

    Args:
        verbose: Show folio.* DEBUG records (artifact writes, phase changes).
        log_json: Render each record as a JSON line instead of console text.
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if log_json:
        renderers: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("folio").setLevel(logging.DEBUG if verbose else logging.WARNING)
    # Observer thread chatter stays quiet even with --verbose.
    logging.getLogger("watchdog").setLevel(logging.WARNING)
