from __future__ import annotations
import logging
import re
from typing import Union


REDACT_PATTERNS = [
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{20,}"), "***"),  # Anthropic
    (re.compile(r"sk-[A-Za-z0-9_\-]{20,}"), "***"),  # OpenAI
    (re.compile(r"AIza[0-9A-Za-z_\-]{30,}"), "***"),  # Google
    (re.compile(r"tvly-[A-Za-z0-9_\-]{16,}"), "***"),  # Tavily
    (re.compile(r"(key=)[^&\s]+"), r"\1***"),  # Gemini puts the key in the query string
]


def redact(value: str) -> str:
    redacted = value
    for pat, repl in REDACT_PATTERNS:
        redacted = pat.sub(repl, redacted)
    return redacted


class RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # Render args first so secrets passed as %s arguments are caught too
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        text = super().format(record)
        return redact(text)


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    logger = logging.getLogger()
    logger.setLevel(level)
    # Clear existing handlers in reload scenarios
    logger.handlers.clear()

    handler = logging.StreamHandler()
    formatter = RedactingFormatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    # httpx logs every outbound request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
