"""
Structured Logging Configuration

Plain or JSON-formatted logging for the session runtime and the evaluation pipeline.
Structured fields travel on the record through ``extra=``.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from logging import LogRecord

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record: level, logger, location, message and every extra field."""

    def format(self, record: LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                payload[key] = value
            except (TypeError, ValueError):
                payload[key] = str(value)

        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str = None,
    timer_logging_enabled: bool = False
) -> None:
    """
    Configure root logging once at import of the app module.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (default True)
        log_file: Optional file path; file output is always JSON
        timer_logging_enabled: Log every countdown tick (very verbose, default False)
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Chatty client libraries
    for name, lib_level in (("uvicorn", logging.INFO), ("httpx", logging.WARNING),
                            ("httpcore", logging.WARNING), ("pymongo", logging.WARNING)):
        logging.getLogger(name).setLevel(lib_level)

    timer_level = logging.DEBUG if timer_logging_enabled else logging.INFO
    logging.getLogger("interview_rooms.services.session_timer").setLevel(timer_level)


def log_llm_call(
    logger: logging.Logger,
    agent_name: str,
    prompt_tokens: int = None,
    completion_tokens: int = None,
    total_tokens: int = None,
    latency_ms: float = None,
    model: str = None,
    **extra
) -> None:
    """
    Log a finished chat model call. Unset fields are left out of the record.

    Example:
        log_llm_call(logger, agent_name="rubric_evaluator", prompt_tokens=1500,
                     completion_tokens=300, latency_ms=1250.5, model="gemini-2.5-flash")
    """
    fields = {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
        "latency_ms": latency_ms,
        "model": model,
    }
    log_data = {"event": "llm_call", "agent_name": agent_name}
    log_data.update({k: v for k, v in fields.items() if v is not None})
    log_data.update(extra)

    logger.info(f"LLM call completed ({agent_name})", extra=log_data)


def log_session_event(logger: logging.Logger, session_id: str, event_type: str, **extra) -> None:
    """
    Log a session lifecycle event.

    ``event_type`` is one of device_acquired, started, question_advanced,
    completing, completed, failed, abandoned, evaluated, closed.
    """
    logger.info(
        f"Session {session_id}: {event_type}",
        extra={"event": "session_event", "session_id": session_id, "event_type": event_type, **extra},
    )
