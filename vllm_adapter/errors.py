"""Error hierarchy and classification for remote generation calls.

Every failure raised by the adapter is one of a closed set of types:

  FrameworkError             base, carries cause and retry hints
    LLMError                 generic wrapped failure, never retryable
      TransportError         gRPC failure with its status code
    AbortError               call cancelled by its signal or by the server
    ValidationError          local protocol-shape failure
      InvalidOptionsError    per-call options failed validation
      MissingOutputError     expected single-item response list was empty
      UnsupportedConstraintError  unrecognized guided decoding override
"""
from typing import FrozenSet, Iterable, Optional

import grpc

# Status codes after which the same request may be sent again.
RETRYABLE_STATUS_CODES: FrozenSet[grpc.StatusCode] = frozenset({
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.UNAVAILABLE,
})


class FrameworkError(Exception):
    """Base class for every error the adapter raises.

    Attributes:
        message: Human-readable description.
        cause: The underlying exception, if any. Also set as ``__cause__``.
        is_retryable: Whether the caller may re-attempt the same operation.
    """

    def __init__(
        self,
        message: str = "Framework error has occurred.",
        *,
        cause: Optional[BaseException] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.is_retryable = is_retryable
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        base = self.message
        if self.cause is not None:
            base += f" (caused by {type(self.cause).__name__}: {self.cause})"
        return base


class LLMError(FrameworkError):
    """Generic failure of a language model operation."""


class TransportError(LLMError):
    """A remote call failed with a gRPC status code."""

    def __init__(
        self,
        message: str,
        code: grpc.StatusCode,
        *,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            cause=cause,
            is_retryable=code in RETRYABLE_STATUS_CODES,
        )
        self.code = code


class AbortError(FrameworkError):
    """The call was cancelled before it completed."""

    def __init__(
        self,
        message: str = "Operation has been aborted!",
        *,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)


class ValidationError(FrameworkError):
    """A local check on request or response shape failed."""

    kind = "validation"


class InvalidOptionsError(ValidationError):
    """Per-call generation options did not match the expected shape."""

    kind = "invalid_options"


class MissingOutputError(ValidationError):
    """The server returned no entry where exactly one was expected."""

    kind = "missing_output"

    def __init__(self, message: str = "Missing output"):
        super().__init__(message)


class UnsupportedConstraintError(ValidationError):
    """A guided decoding override used keys the backend does not support."""

    kind = "unsupported_constraint"

    def __init__(self, keys: Iterable[str]):
        self.keys = list(keys)
        super().__init__(
            f"Following types {','.join(self.keys)} for the constraint "
            f"decoding are not supported!"
        )


def status_code_from_int(value: int) -> Optional[grpc.StatusCode]:
    """Map a numeric gRPC status (e.g. 4) to its ``grpc.StatusCode``."""
    for code in grpc.StatusCode:
        if code.value[0] == value:
            return code
    return None


def classify_error(error: Exception) -> FrameworkError:
    """Convert a failure from a remote call into a FrameworkError.

    Framework errors are returned unchanged so they are never wrapped twice.
    gRPC failures become TransportError (or AbortError for CANCELLED), and
    anything else becomes a non-retryable LLMError with the original as cause.
    """
    if isinstance(error, FrameworkError):
        return error

    # Sync channel errors are both RpcError and Call; aio errors subclass RpcError only.
    if isinstance(error, grpc.aio.AioRpcError) or (
        isinstance(error, grpc.RpcError) and isinstance(error, grpc.Call)
    ):
        code = error.code()
        if code is grpc.StatusCode.CANCELLED:
            return AbortError(cause=error)
        return TransportError("LLM has occurred an error!", code, cause=error)

    return LLMError("LLM has occurred an error!", cause=error)
