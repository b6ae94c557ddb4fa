"""
Error taxonomy and fault classification for token acquisition.

Callers only ever see ConfigurationError, CancelledError or TransientAuthError.
Lower-layer faults carry a FaultKind tag; classify() reads the tag after
unwrapping exception groups, it never dispatches on exception type.
"""
import asyncio
import enum
from dataclasses import dataclass


class FaultKind(str, enum.Enum):
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"
    TRANSIENT = "transient"


class TokenEngineError(Exception):
    """Base for everything the engine raises to its caller."""

    kind: FaultKind = FaultKind.TRANSIENT


class ConfigurationError(TokenEngineError):
    """Required identity fields (client id, audience) are missing. Never retried."""

    kind = FaultKind.CONFIGURATION


class CancelledError(TokenEngineError):
    """The user or the flow cancelled interactive authorization. Never retried."""

    kind = FaultKind.CANCELLED


class TransientAuthError(TokenEngineError):
    """Acquisition kept failing until the logon deadline passed."""

    kind = FaultKind.TRANSIENT


class ProviderError(Exception):
    """
    Fault reported by the identity provider or the transport to it.
    error / status_code mirror the token endpoint's JSON error body when there is one.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: FaultKind = FaultKind.TRANSIENT,
        error: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.error = error
        self.status_code = status_code


@dataclass
class Fault:
    kind: FaultKind
    cause: BaseException

    @property
    def message(self) -> str:
        return str(self.cause) or type(self.cause).__name__


def unwrap(exc: BaseException) -> BaseException:
    """
    Reduce a batched fault to its first cause. A group with no members stands for itself.
    """
    while isinstance(exc, BaseExceptionGroup):
        if not exc.exceptions:
            break
        exc = exc.exceptions[0]
    return exc


def classify(exc: BaseException) -> Fault:
    """Unwrap, then map to a FaultKind. Untagged faults are transient."""
    cause = unwrap(exc)
    if isinstance(cause, asyncio.CancelledError):
        return Fault(FaultKind.CANCELLED, cause)
    kind = getattr(cause, "kind", None)
    if not isinstance(kind, FaultKind):
        kind = FaultKind.TRANSIENT
    return Fault(kind, cause)
