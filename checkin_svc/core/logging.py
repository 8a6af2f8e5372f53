from __future__ import annotations
import logging

from .config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once for the service process."""
    level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("checkin_svc").setLevel(level)
    # nats client is chatty on reconnect attempts
    logging.getLogger("nats").setLevel(logging.WARNING)
