"""Exceptions raised by the Qi agent wallet."""
from typing import Optional


class QiAgentError(Exception):
    """Base class for all wallet errors."""


class InvalidZone(QiAgentError, ValueError):
    pass


class InvalidDenomination(QiAgentError, ValueError):
    def __init__(self, index):
        super().__init__(f"Invalid denomination index: {index!r}")
        self.index = index


class InvalidCounterpartyCode(QiAgentError, ValueError):
    """A payment code could not be parsed or used to open a channel."""

    def __init__(self, code, reason: str = "malformed payment code"):
        shown = str(code)[:20] if code is not None else None
        super().__init__(f"{reason}: {shown!r}")
        self.code = code
        self.reason = reason


class GatewayError(QiAgentError):
    """Transport level failure talking to a ledger gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MailboxError(QiAgentError):
    pass


class MailboxQueryFailed(MailboxError):
    """Reading the notification registry failed; this is never an empty mailbox."""

    def __init__(self, receiver: str, cause: Optional[BaseException] = None):
        super().__init__(f"Mailbox query failed for {str(receiver)[:20]}...: {cause}")
        self.receiver = receiver
        self.cause = cause


class MailboxWriteFailed(MailboxError):
    def __init__(self, sender: str, receiver: str, cause=None, tx_hash: Optional[str] = None):
        super().__init__(f"Mailbox notify failed ({str(sender)[:12]}... -> {str(receiver)[:12]}...): {cause}")
        self.sender = sender
        self.receiver = receiver
        self.cause = cause
        self.tx_hash = tx_hash


class ScanFailed(QiAgentError):
    def __init__(self, zone, cause: Optional[BaseException] = None):
        super().__init__(f"Scan failed for zone {zone}: {cause}")
        self.zone = zone
        self.cause = cause


class PaymentError(QiAgentError):
    """Send flow failure. ``notification`` is the receipt of a notify issued
    earlier in the same send, if one was issued."""

    def __init__(self, message: str, notification=None):
        super().__init__(message)
        self.notification = notification


class InsufficientFunds(PaymentError):
    def __init__(self, zone, requested: int, available: int, notification=None):
        super().__init__(
            f"Insufficient funds in {zone}: requested {requested} qits, available {available} qits",
            notification=notification,
        )
        self.zone = zone
        self.requested = requested
        self.available = available


class TransferFailed(PaymentError):
    def __init__(self, message: str, notification=None, cause: Optional[BaseException] = None):
        super().__init__(message, notification=notification)
        self.cause = cause


class SerializationError(QiAgentError):
    pass


class SyncInProgress(QiAgentError):
    pass
