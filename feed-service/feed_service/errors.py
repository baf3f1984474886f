"""
Error normalization and user-facing notices
"""
import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Tuple, TypeVar

from .config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred"
TIMEOUT_MESSAGE = "Operation timed out"


class BackendError(Exception):
    """Error returned by (or while talking to) the backend platform"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint
        self.details = details
        self.status = status

    @classmethod
    def from_response_body(cls, body: Any, status: Optional[int] = None) -> "BackendError":
        """Build from a PostgREST/auth error body"""
        if not isinstance(body, dict):
            return cls(DEFAULT_ERROR_MESSAGE, status=status)
        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or DEFAULT_ERROR_MESSAGE
        )
        code = body.get("code")
        return cls(
            str(message),
            code=str(code) if code is not None else None,
            hint=body.get("hint"),
            details=body.get("details"),
            status=status,
        )

    def __repr__(self) -> str:
        return f"BackendError(message={self.message!r}, code={self.code!r}, status={self.status!r})"


def normalize_error(exc: Any, fallback: str = DEFAULT_ERROR_MESSAGE) -> BackendError:
    """Coerce anything raised at a call site into a BackendError"""
    if isinstance(exc, BackendError):
        return exc
    message = str(exc) if exc else ""
    return BackendError(message or fallback)


def is_retryable(err: BackendError) -> bool:
    """Server errors, serialization failures and lock timeouts are worth a manual retry"""
    if err.status is not None and err.status >= 500:
        return True
    return err.code in ("40001", "55P03")


def friendly_message(err: BackendError) -> str:
    """Map common backend failures to a message fit for a toast"""
    if err.code == "23505":
        return "Record already exists (duplicate). Change the name and try again."
    if err.code == "42501" or err.status == 403:
        return "You do not have permission to perform this operation."
    if err.status == 404:
        return "Resource not found."
    return err.message


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: Optional[float] = None,
    message: str = TIMEOUT_MESSAGE,
) -> T:
    """Await with a deadline, raising BackendError on expiry"""
    timeout = seconds if seconds is not None else settings.REQUEST_TIMEOUT
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Operation exceeded {timeout}s")
        raise BackendError(message)


class Notifier:
    """
    Transient user-facing notices (toasts).

    Notices are logged and kept so that a gateway or UI layer can drain and
    forward them.
    """

    def __init__(self):
        self.notices: List[Tuple[str, str]] = []

    def error(self, message: str):
        logger.error(f"[toast] {message}")
        self.notices.append(("error", message))

    def success(self, message: str):
        logger.info(f"[toast] {message}")
        self.notices.append(("success", message))

    def report(self, exc: Any, fallback: str = DEFAULT_ERROR_MESSAGE) -> BackendError:
        """Normalize a failure and surface it as an error toast"""
        err = normalize_error(exc, fallback)
        self.error(friendly_message(err))
        return err

    def drain(self) -> List[Tuple[str, str]]:
        notices, self.notices = self.notices, []
        return notices
