"""Process-wide logging setup, called once by each entrypoint."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional
from src.livechat.utils.settings import SETTINGS

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "pymongo")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


def setup_logging(
    level: Optional[str] = None, as_json: Optional[bool] = None
) -> None:
    level = (level or SETTINGS.LOG_LEVEL).upper()
    as_json = SETTINGS.LOG_JSON if as_json is None else as_json

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if as_json else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    # Replace handlers so repeated calls don't duplicate output
    root.handlers = [handler]
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
