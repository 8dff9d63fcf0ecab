import json
import logging
from datetime import datetime, timezone

from review_aggregator.core.config import get_settings

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, rec: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(rec.created, tz=timezone.utc).isoformat(),
            "level": rec.levelname,
            "msg": rec.getMessage(),
            "logger": rec.name,
        }
        for key, value in rec.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if rec.exc_info:
            payload["exc"] = self.formatException(rec.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def get_logger(name: str = "review_aggregator", level: str | None = None) -> logging.Logger:
    lg = logging.getLogger(name)
    if not lg.handlers:
        h = logging.StreamHandler()
        h.setFormatter(JsonFormatter())
        lg.addHandler(h)
        lg.setLevel(level or get_settings().log_level.upper())
    elif level:
        lg.setLevel(level)
    return lg
