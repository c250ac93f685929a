import logging
import os
import re
from pathlib import Path
from typing import Optional


# Dashed or bare 9-digit SSNs; ZIP+4 (5-4) and epoch millis do not match.
_SSN_RE = re.compile(r"\b(?:\d{3}-\d{2}-\d{4}|\d{9})\b")
SSN_MASK = "***-**-****"


class RedactSsnFilter(logging.Filter):
    """
    Masks SSN-shaped numbers in log messages. Playwright error text includes the call log of the
    failing action, and for `fill()` that means the value being typed.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        if _SSN_RE.search(message):
            record.msg = _SSN_RE.sub(SSN_MASK, message)
            record.args = None
        return True


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redact = RedactSsnFilter()
    for handler in handlers:
        handler.addFilter(redact)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file is loaded
    )

    for noisy in ("playwright", "urllib3"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
