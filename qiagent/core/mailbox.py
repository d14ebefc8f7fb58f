"""
Notification mailbox client.

Thin protocol client over the on-chain PaymentChannelMailbox registry:

    notify(string senderPaymentCode, string receiverPaymentCode)
    getNotifications(string receiverPaymentCode) view returns (string[])
    event NotificationSent(string senderPaymentCode, string receiverPaymentCode)

The registry is append-only and may hold duplicate entries; this client
collapses them into a set. A failed read raises MailboxQueryFailed and is
never reported as an empty mailbox.
"""
from typing import Callable, FrozenSet, Optional

from .errors import MailboxQueryFailed, MailboxWriteFailed
from .interfaces import NotificationReceipt, NotificationRegistry
from ..utils.console import print_info, print_success


class MailboxClient:
    """Wrapper for the notification registry contract"""

    def __init__(self, registry: NotificationRegistry, address: str = "", notify_timeout: float = 120.0):
        self.registry = registry
        self.address = address
        self.notify_timeout = notify_timeout

    def notify(self, sender_code: str, receiver_code: str, wait: bool = True) -> NotificationReceipt:
        """Tell ``receiver_code`` that ``sender_code`` is going to pay it.

        Call this before the first payment to a new recipient. With ``wait``
        the call returns only once the notification is durable. Duplicate
        calls are harmless; the registry is append-only.
        """
        print_info(f"📨 Sending mailbox notification to {receiver_code[:20]}...")
        try:
            tx_hash = self.registry.notify(sender_code, receiver_code)
        except Exception as e:
            raise MailboxWriteFailed(sender_code, receiver_code, e) from e

        if not wait:
            return NotificationReceipt(tx_hash=tx_hash, sender=sender_code, receiver=receiver_code)

        try:
            receipt = self.registry.wait_for_receipt(tx_hash, self.notify_timeout)
        except Exception as e:
            raise MailboxWriteFailed(sender_code, receiver_code, e, tx_hash=tx_hash) from e
        if not receipt.confirmed:
            raise MailboxWriteFailed(sender_code, receiver_code, "notification not confirmed", tx_hash=tx_hash)
        print_success(f"✅ Notification confirmed: {tx_hash}")
        return receipt

    def list_notifications(self, receiver_code: str) -> FrozenSet[str]:
        """All sender codes that ever notified ``receiver_code``."""
        try:
            senders = self.registry.get_notifications(receiver_code)
        except Exception as e:
            raise MailboxQueryFailed(receiver_code, e) from e
        if senders is None:
            raise MailboxQueryFailed(receiver_code, "registry returned no result")
        return frozenset(str(s) for s in senders if s)

    def has_notified(self, sender_code: str, receiver_code: str) -> bool:
        return sender_code in self.list_notifications(receiver_code)

    def on_notification(self, receiver_code: Optional[str],
                        callback: Callable[[str, str], None]) -> Callable[[], None]:
        """Listen for NotificationSent events, optionally filtered by receiver.

        Returns a function that stops listening.
        """
        def listener(sender: str, receiver: str) -> None:
            if not receiver_code or receiver == receiver_code:
                callback(sender, receiver)

        return self.registry.subscribe(listener)
