"""Logging configuration for hikup."""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys

from .settings import Settings, settings

SYSLOG_IDENT = "hikup: "


def _syslog_address(raw: str) -> str | tuple[str, int]:
    if raw.startswith("/") or ":" not in raw:
        return raw
    host, _, port = raw.rpartition(":")
    return host, int(port)


def _stderr_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    return handler


def setup_logging(s: Settings = settings) -> logging.Handler:
    """Route the `hikup` logger tree to syslog (daemon facility) or stderr."""
    level = getattr(logging, s.log_level.upper(), logging.INFO)

    fallback_reason = None
    handler: logging.Handler | None = None
    if s.log_target == "syslog":
        try:
            address = _syslog_address(s.syslog_address)
            # SysLogHandler ignores a missing socket and then drops every record.
            if isinstance(address, str) and not os.path.exists(address):
                raise FileNotFoundError(f"no such socket: {address}")
            handler = logging.handlers.SysLogHandler(
                address=address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            handler.ident = SYSLOG_IDENT
            handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        except (OSError, ValueError) as e:
            fallback_reason = f"syslog unavailable at {s.syslog_address}: {e}"
    if handler is None:
        handler = _stderr_handler()

    logger = logging.getLogger("hikup")
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(level)

    # docker SDK and urllib3 are chatty at DEBUG
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    if fallback_reason:
        logger.warning("%s; logging to stderr", fallback_reason)
    return handler
