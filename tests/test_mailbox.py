import pytest
from unittest.mock import Mock

from qiagent.core.errors import GatewayError, MailboxQueryFailed, MailboxWriteFailed
from qiagent.core.interfaces import NotificationReceipt
from qiagent.core.mailbox import MailboxClient

SENDER = "PM8TSENDERSENDERSENDERSENDER"
OTHER = "PM8TOTHEROTHEROTHEROTHEROTHER"
RECEIVER = "PM8TRECEIVERRECEIVERRECEIVER"


class TestMailboxClient:
    def test_duplicates_collapse_to_one_sender(self, network):
        mailbox = MailboxClient(network)
        mailbox.notify(SENDER, RECEIVER)
        mailbox.notify(SENDER, RECEIVER)
        mailbox.notify(OTHER, RECEIVER)

        assert network.get_notifications(RECEIVER).count(SENDER) == 2
        assert mailbox.list_notifications(RECEIVER) == frozenset({SENDER, OTHER})

    def test_has_notified(self, network):
        mailbox = MailboxClient(network)
        assert not mailbox.has_notified(SENDER, RECEIVER)
        mailbox.notify(SENDER, RECEIVER)
        assert mailbox.has_notified(SENDER, RECEIVER)
        assert not mailbox.has_notified(RECEIVER, SENDER)

    def test_query_failure_is_not_an_empty_mailbox(self, network):
        mailbox = MailboxClient(network)
        network.mailbox_down = True
        with pytest.raises(MailboxQueryFailed) as exc:
            mailbox.list_notifications(RECEIVER)
        assert isinstance(exc.value.cause, GatewayError)

    def test_none_result_is_a_failure(self):
        registry = Mock()
        registry.get_notifications.return_value = None
        with pytest.raises(MailboxQueryFailed):
            MailboxClient(registry).list_notifications(RECEIVER)

    def test_notify_returns_confirmed_receipt(self, network):
        receipt = MailboxClient(network).notify(SENDER, RECEIVER)
        assert receipt.confirmed
        assert receipt.sender == SENDER
        assert receipt.receiver == RECEIVER

    def test_notify_write_failure(self, network):
        network.mailbox_down = True
        with pytest.raises(MailboxWriteFailed) as exc:
            MailboxClient(network).notify(SENDER, RECEIVER)
        assert exc.value.tx_hash is None

    def test_unconfirmed_receipt_is_a_write_failure(self):
        registry = Mock()
        registry.notify.return_value = "0xabc"
        registry.wait_for_receipt.return_value = NotificationReceipt("0xabc", SENDER, RECEIVER, confirmed=False)

        with pytest.raises(MailboxWriteFailed) as exc:
            MailboxClient(registry, notify_timeout=5).notify(SENDER, RECEIVER)
        assert exc.value.tx_hash == "0xabc"
        registry.wait_for_receipt.assert_called_once_with("0xabc", 5)

    def test_notify_without_wait(self):
        registry = Mock()
        registry.notify.return_value = "0xdef"
        receipt = MailboxClient(registry).notify(SENDER, RECEIVER, wait=False)
        assert receipt.tx_hash == "0xdef"
        registry.wait_for_receipt.assert_not_called()

    def test_on_notification_filters_by_receiver(self, network):
        mailbox = MailboxClient(network)
        seen = []
        unsubscribe = mailbox.on_notification(RECEIVER, lambda s, r: seen.append((s, r)))

        mailbox.notify(SENDER, RECEIVER)
        mailbox.notify(SENDER, OTHER)
        unsubscribe()
        mailbox.notify(OTHER, RECEIVER)

        assert seen == [(SENDER, RECEIVER)]
