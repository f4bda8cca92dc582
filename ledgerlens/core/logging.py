from __future__ import annotations

import logging

from ledgerlens.core.config import get_settings


_CONFIGURED = False


def configure_logging() -> None:
    # Configure the root logger once; repeated app factories in tests must not stack handlers.
    global _CONFIGURED
    if _CONFIGURED:
        return
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Keep driver chatter out of request logs unless debugging the database itself.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
    _CONFIGURED = True
