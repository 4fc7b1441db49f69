import logging
import traceback
from typing import Any, Dict

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def error_details(exc: BaseException) -> Dict[str, Any]:
    """Structured fields logged alongside connection failures."""
    code = getattr(exc, "code", None)
    if code is None:
        code = getattr(getattr(exc, "orig", None), "pgcode", None)
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "code": code,
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
