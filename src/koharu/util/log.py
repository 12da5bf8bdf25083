# src/koharu/util/log.py: Structured JSON logger.
# This module provides a centralized logging setup that outputs structured
# JSON logs to stderr. It uses contextvars to inject the current update phase
# into every record, so a log line can be tied back to the state the session
# was in when it was written.

import logging
import json
import contextvars

phase_context = contextvars.ContextVar('phase_context', default=None)

ROOT_LOGGER = "koharu"

class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "phase": phase_context.get(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)

def get_logger(name):
    # Handlers live on the package root logger; children only propagate.
    return logging.getLogger(name)

def configure_logging(level: str = "WARNING", json_format: bool = True, verbose: bool = False) -> logging.Logger:
    """Attach a single stderr handler to the package root logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else level.upper())
    logger.propagate = False
    if not logger.handlers:
        handler = logging.StreamHandler()
        if json_format:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            )
        logger.addHandler(handler)
    return logger
