import json
import logging
import os
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler

from . import config


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def setup_logger(level=None, log_dir=None):
    logger = logging.getLogger()
    logger.setLevel(level or config.LOG_LEVEL)

    # idempotent under uvicorn --reload and repeated test imports
    if any(isinstance(h.formatter, JsonFormatter) for h in logger.handlers):
        return logger

    console = logging.StreamHandler()
    console.setFormatter(JsonFormatter())
    logger.addHandler(console)

    log_dir = log_dir or config.LOG_DIR
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        # rotates daily, keeps 14 days
        handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, "kht_api.log"),
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    return logger
