"""Error taxonomy for batch agent processing."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..parsing import ParseError

# Reserved error strings on WorkItemResult
SKIPPED_ERROR = "skipped"
CANCELLED_ERROR = "cancelled"
TIMEOUT_PREFIX = "timeout"

MAX_ERROR_LENGTH = 500


class BatchAgentError(Exception):
    """Base class for all errors raised by batch_agent."""

    pass


class InputFileError(BatchAgentError):
    """The batch input file could not be read. Aborts the run."""

    pass


class InputValidationError(BatchAgentError):
    """
    Raised when the input contains invalid entries and skip_invalid is off.

    Attributes:
        errors: ParseError entries in file order
    """

    def __init__(self, errors: list["ParseError"]):
        self.errors = errors
        preview = "; ".join(
            f"line {e.line_number}: {e.reason}" for e in errors[:5]
        )
        more = f" (and {len(errors) - 5} more)" if len(errors) > 5 else ""
        super().__init__(
            f"{len(errors)} invalid input entr{'y' if len(errors) == 1 else 'ies'}: "
            f"{preview}{more}"
        )


class AgentUnavailableError(BatchAgentError):
    """
    The agent cannot be constructed or reached at all.

    Unlike a failed chat call, this is fatal: the run is aborted and no
    BatchResult is produced.
    """

    pass


class BatchCancelledError(BatchAgentError):
    """Raised by the quota gate once the run has been cancelled."""

    pass


class AttemptTimeoutError(TimeoutError):
    """
    A single dispatch attempt exceeded its deadline.

    Enforced by the processor around each agent call rather than by the provider,
    so callers can tell slow-provider failures apart from hard errors.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"{TIMEOUT_PREFIX}: no response within {timeout:g}s")


def format_error(exception: BaseException) -> str:
    """Render an exception as the error string stored on a result."""
    if isinstance(exception, AttemptTimeoutError):
        return str(exception)
    return f"{type(exception).__name__}: {str(exception)[:MAX_ERROR_LENGTH]}"
