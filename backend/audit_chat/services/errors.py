# audit_chat/services/errors.py
"""
Classifiable failures for chat turns.

Each error carries a machine code, a detail that is safe to show the user,
and an optional log-only detail. Formatting and summarization failures never
surface here: those components degrade instead of raising.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(eq=False)
class ChatError(Exception):
    code: str                 # "NOT_FOUND" | "PROVIDER_TERMINAL" | "ROTATION_FAILED" | ...
    public_detail: str        # safe message for clients
    log_detail: str = ""      # extra info for server logs
    retryable: bool = True    # whether resending the message may succeed

    def __str__(self) -> str:
        return self.log_detail or self.public_detail


class NotFoundError(ChatError):
    def __init__(self, what: str, ident: object):
        super().__init__(
            code="NOT_FOUND",
            public_detail=f"{what} not found",
            log_detail=f"{what} {ident!r} not found",
            retryable=False,
        )


class ConfigurationError(ChatError):
    def __init__(self, public_detail: str, log_detail: str = ""):
        super().__init__(
            code="NOT_CONFIGURED",
            public_detail=public_detail,
            log_detail=log_detail,
            retryable=False,
        )


class ProviderTransientError(ChatError):
    """Timeouts, rate limits and 5xx from the provider. Retried only inside the poll budget."""

    def __init__(self, log_detail: str):
        super().__init__(
            code="PROVIDER_TRANSIENT",
            public_detail="The assistant is temporarily unavailable. Please try again.",
            log_detail=log_detail,
        )


class ProviderTerminalError(ChatError):
    """Run ended in failed/cancelled/expired (or needs an action we never take)."""

    def __init__(self, status: str, reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        detail = f"The assistant could not finish this answer (run {status})"
        if reason:
            detail += f": {reason}"
        super().__init__(
            code="PROVIDER_TERMINAL",
            public_detail=detail + ". Please resend your message.",
            log_detail=f"run status={status} reason={reason!r}",
        )


class ProviderTimeoutError(ChatError):
    def __init__(self, attempts: int, interval_s: float):
        super().__init__(
            code="PROVIDER_TIMEOUT",
            public_detail="The assistant took too long to respond. Please resend your message.",
            log_detail=f"run still pending after {attempts} polls at {interval_s}s",
        )


class RotationError(ChatError):
    def __init__(self, log_detail: str):
        super().__init__(
            code="ROTATION_FAILED",
            public_detail=(
                "This conversation has grown too long and a fresh context could not be prepared. "
                "Please resend your message."
            ),
            log_detail=log_detail,
        )


class PersistenceError(ChatError):
    def __init__(self, public_detail: str, log_detail: str = ""):
        super().__init__(
            code="PERSISTENCE_FAILED",
            public_detail=public_detail,
            log_detail=log_detail,
        )
