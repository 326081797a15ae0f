"""Error taxonomy for harvest operations.

Every failure raised by a harvest attempt is classified at its origin into
one of three kinds and carries the context needed by the retry filter and
by the engine-level error callback.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Kinds of classified harvest errors."""

    TIMEOUT = "TimeoutError"
    NAVIGATION = "NavigationError"
    EXTRACTION = "ExtractionError"

    @classmethod
    def parse(cls, value: "str | ErrorKind") -> "ErrorKind":
        """Resolve a kind from its name (e.g. "TimeoutError" or "timeout")."""
        if isinstance(value, ErrorKind):
            return value
        for kind in cls:
            if value in (kind.value, kind.name, kind.name.lower()):
                return kind
        raise ValueError(
            f"Unknown error kind: {value}. Available: {[k.value for k in cls]}"
        )


class HarvestError(Exception):
    """Base class for classified harvest failures."""

    kind: ErrorKind

    def __init__(
        self,
        message: str,
        url: str,
        operation: str,
        selector: Optional[str] = None,
        cause: Optional[BaseException] = None,
        attempt: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.operation = operation
        self.selector = selector
        self.cause = cause
        self.attempt = attempt

    @property
    def kind_name(self) -> str:
        return self.kind.value

    def context(self) -> dict[str, Any]:
        """Structured context passed to error callbacks."""
        return {
            "kind": self.kind.value,
            "url": self.url,
            "operation": self.operation,
            "selector": self.selector,
            "attempt": self.attempt,
        }

    def __str__(self) -> str:
        where = f" [{self.selector}]" if self.selector else ""
        return f"{self.kind.value} during {self.operation} of {self.url}{where}: {self.message}"


class HarvestTimeoutError(HarvestError, TimeoutError):
    """A navigation, wait or extraction phase exceeded its deadline."""

    kind = ErrorKind.TIMEOUT


class NavigationError(HarvestError):
    """Navigation or page initialization failed for a non-timeout reason."""

    kind = ErrorKind.NAVIGATION


class ExtractionError(HarvestError):
    """In-browser evaluation failed while extracting data."""

    kind = ErrorKind.EXTRACTION


ERROR_CLASSES: dict[ErrorKind, type[HarvestError]] = {
    ErrorKind.TIMEOUT: HarvestTimeoutError,
    ErrorKind.NAVIGATION: NavigationError,
    ErrorKind.EXTRACTION: ExtractionError,
}


def is_timeout(exc: BaseException) -> bool:
    """Check whether an exception (or its cause) is a timeout."""
    # asyncio.TimeoutError is the builtin TimeoutError on 3.11+
    return isinstance(exc, TimeoutError) or isinstance(exc.__cause__, TimeoutError)


def classify_error(
    exc: BaseException,
    default_kind: ErrorKind,
    url: str,
    operation: str,
    selector: Optional[str] = None,
    attempt: int = 1,
) -> HarvestError:
    """Wrap a raw driver exception into a classified error.

    Timeouts are always classified as TimeoutError; anything else gets the
    phase's default kind. Already-classified errors are returned unchanged.
    """
    if isinstance(exc, HarvestError):
        return exc

    kind = ErrorKind.TIMEOUT if is_timeout(exc) else default_kind
    error_class = ERROR_CLASSES[kind]
    message = str(exc) or exc.__class__.__name__
    return error_class(
        message,
        url=url,
        operation=operation,
        selector=selector,
        cause=exc,
        attempt=attempt,
    )


ErrorCallback = Callable[[HarvestError, dict[str, Any]], Any]


class ErrorReporter:
    """Delivers classified errors to the engine's optional callback.

    The callback may be sync or async. Async callbacks are scheduled as tasks
    on the running loop; `drain()` waits for them. Callback failures are
    logged and never propagated.
    """

    def __init__(self, callback: Optional[ErrorCallback] = None):
        self._callback = callback
        self._pending: set[asyncio.Task] = set()
        self.reported = 0

    def report(self, error: HarvestError, **extra: Any) -> None:
        self.reported += 1
        logger.debug(f"Classified error (attempt {error.attempt}): {error}")

        if self._callback is None:
            return

        context = error.context()
        context.update(extra)
        try:
            result = self._callback(error, context)
        except Exception as e:
            logger.warning(f"Error callback raised {e.__class__.__name__}: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._finish)

    def _finish(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        e = task.exception()
        if e is not None:
            logger.warning(f"Error callback raised {e.__class__.__name__}: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled async callbacks to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
