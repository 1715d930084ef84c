import json
import logging
from datetime import datetime, timezone
from typing import Optional

from .settings import Settings, settings as default_settings

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation in production."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(config: Optional[Settings] = None) -> logging.Logger:
    """Attach a single stream handler to the `appcache` logger.

    Development gets a readable console format at DEBUG, anything else gets
    JSON lines at INFO. `log_level` in the settings overrides the level.
    Calling this again replaces the handler instead of stacking a new one.
    """

    config = config or default_settings
    level_name = config.log_level or ("DEBUG" if config.is_development else "INFO")

    handler = logging.StreamHandler()
    if config.is_development:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger = logging.getLogger("appcache")
    for old in logger.handlers[:]:
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(level_name.upper())
    return logger
