"""Exceptions raised by the flash orchestration engine.

Every error carries a human-readable message and a stable error code that
is recorded in step outcomes. Per-step errors (resolve, extraction, flash,
erase) are caught at the step boundary and folded into the session tally;
only SessionBusyError escapes SessionController.start().
"""


class FlashServiceError(Exception):
    """Base exception for flash service errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ResolveError(FlashServiceError):
    """A selected item could not be turned into a flash unit."""

    def __init__(
        self, name: str, message: str, error_code: str = "INVALID_SELECTION"
    ) -> None:
        super().__init__(message, error_code=error_code)
        self.name = name


class MissingImageError(ResolveError):
    """Image file for a selected partition is missing or empty."""

    def __init__(self, name: str, path: str | None = None) -> None:
        super().__init__(
            name,
            f"Image for partition '{name}' is missing or empty: {path}",
            error_code="MISSING_IMAGE",
        )
        self.path = path


class TransitionError(FlashServiceError):
    """Device could not be moved to the requested mode."""

    def __init__(
        self, target: str, message: str, error_code: str = "MODE_TRANSITION_FAILED"
    ) -> None:
        super().__init__(message, error_code=error_code)
        self.target = target


class ReconnectTimeoutError(TransitionError):
    """Device did not re-enumerate after a mode-changing reboot."""

    def __init__(self, target: str, timeout_seconds: float, attempts: int) -> None:
        super().__init__(
            target,
            f"Device did not reconnect within {timeout_seconds:g}s "
            f"({attempts} attempts)",
            error_code="RECONNECT_TIMEOUT",
        )
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts


class ExtractionError(FlashServiceError):
    """Partition image could not be extracted from its payload."""

    def __init__(self, name: str, reason: str = "extractor reported failure") -> None:
        super().__init__(
            f"Failed to extract '{name}': {reason}", error_code="EXTRACTION_FAILED"
        )
        self.name = name


class FlashError(FlashServiceError):
    """Device rejected or failed a partition write."""

    def __init__(self, target_name: str, reason: str = "device reported failure") -> None:
        super().__init__(
            f"Failed to flash '{target_name}': {reason}", error_code="FLASH_FAILED"
        )
        self.target_name = target_name


class EraseError(FlashServiceError):
    """Device rejected or failed a partition erase."""

    def __init__(self, name: str, reason: str = "device reported failure") -> None:
        super().__init__(f"Failed to erase '{name}': {reason}", error_code="ERASE_FAILED")
        self.name = name


class SessionBusyError(FlashServiceError):
    """A flash session is already running on this controller."""

    def __init__(self, active_session_id: str | None = None) -> None:
        super().__init__(
            f"A flash session is already active: {active_session_id}",
            error_code="SESSION_BUSY",
        )
        self.active_session_id = active_session_id


class FlashAbortedError(FlashServiceError):
    """Flash operation was aborted by user cancellation."""

    def __init__(self, message: str = "Flash operation aborted") -> None:
        super().__init__(message, error_code="FLASH_ABORTED")


__all__ = [
    "EraseError",
    "ExtractionError",
    "FlashAbortedError",
    "FlashError",
    "FlashServiceError",
    "MissingImageError",
    "ReconnectTimeoutError",
    "ResolveError",
    "SessionBusyError",
    "TransitionError",
]
