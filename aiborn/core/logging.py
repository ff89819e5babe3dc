import logging
import sys
import uuid
from contextvars import ContextVar

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

# SDK loggers that log every HTTP round trip at INFO/DEBUG
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "openai")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        return True


def configure_logging(level: str | int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s request_id=%(request_id)s %(name)s: %(message)s")
    )
    handler.addFilter(RequestIdFilter())

    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


def mask_email(email: str | None) -> str:
    """jane.doe@example.com -> ja***@example.com, for log lines."""
    if not email or "@" not in email:
        return "-"
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"
