"""
Send flow.

    1. has_notified(my code, recipient)?
    2. if not: notify and wait until the notification is durable
    3. select inputs, build, sign and submit the transfer
    4. return both outcomes

A transfer to a new recipient is never attempted before its notification is
confirmed, otherwise the recipient could not discover the channel the funds
were sent on. When step 3 fails, the error carries the receipt from step 2 so
the caller knows not to notify again.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .channels import ChannelManager
from .denominations import denominate
from .errors import InsufficientFunds, TransferFailed
from .interfaces import KeyService, NotificationReceipt, TransactionSubmitter, TransferReceipt
from .ledger import LedgerState, Outpoint
from .mailbox import MailboxClient
from .zones import Zone, parse_zone
from ..utils.console import print_info, print_success
from ..utils.formatting import format_balance


@dataclass
class PaymentSent:
    amount: int
    recipient_payment_code: str
    transfer: TransferReceipt
    origin_zone: Zone
    destination_zone: Zone
    notification: Optional[NotificationReceipt] = None
    timestamp: float = field(default_factory=time.time)
    inputs: List[Outpoint] = field(default_factory=list)
    outputs: List[Dict] = field(default_factory=list)

    @property
    def qi_tx_hash(self) -> str:
        return self.transfer.hash

    @property
    def notify_tx_hash(self) -> str:
        return self.notification.tx_hash if self.notification else ""


def select_inputs(candidates: List[Outpoint], amount: int) -> Tuple[List[Outpoint], int]:
    """Largest-first selection; returns (inputs, selected total)."""
    selected = []
    total = 0
    for op in sorted(candidates, key=lambda o: (-o.value, o.tx_hash, o.index)):
        if total >= amount:
            break
        selected.append(op)
        total += op.value
    return selected, total


class PaymentSender:
    def __init__(self, channels: ChannelManager, mailbox: MailboxClient, ledger: LedgerState,
                 submitter: TransactionSubmitter, key_service: KeyService):
        self.channels = channels
        self.mailbox = mailbox
        self.ledger = ledger
        self.submitter = submitter
        self.key_service = key_service
        self._send_lock = threading.Lock()

    def ensure_notified(self, recipient_code: str) -> Optional[NotificationReceipt]:
        """Notify the recipient unless the mailbox already holds our notification."""
        my_code = self.channels.payment_code
        if recipient_code == my_code:
            return None
        if self.mailbox.has_notified(my_code, recipient_code):
            return None
        return self.mailbox.notify(my_code, recipient_code, wait=True)

    def send(self, recipient_code: str, amount: int, origin_zone: Zone,
             destination_zone: Optional[Zone] = None) -> PaymentSent:
        amount = int(amount)
        if amount <= 0:
            raise ValueError("Amount must be positive")
        origin_zone = parse_zone(origin_zone)
        destination_zone = parse_zone(destination_zone) if destination_zone is not None else origin_zone
        recipient_code = str(recipient_code).strip()

        channel = self.channels.open_channel(recipient_code)
        notification = self.ensure_notified(recipient_code)

        with self._send_lock:
            inputs, selected = select_inputs(self.ledger.spendable(origin_zone), amount)
            if selected < amount:
                raise InsufficientFunds(origin_zone, amount, selected, notification=notification)

            allocated = []
            pay_index, pay_address = self.channels.allocate_send_address(channel, destination_zone)
            allocated.append((channel, destination_zone, pay_index))
            outputs = [
                {"address": pay_address, "zone": destination_zone.value, "denomination": d}
                for d in denominate(amount)
            ]
            change = selected - amount
            if change > 0:
                change_index, change_address = self.channels.allocate_send_address(self.channels.self_channel, origin_zone)
                allocated.append((self.channels.self_channel, origin_zone, change_index))
                outputs += [
                    {"address": change_address, "zone": origin_zone.value, "denomination": d}
                    for d in denominate(change)
                ]

            payload = {
                "type": "qi_transfer",
                "originZone": origin_zone.value,
                "destinationZone": destination_zone.value,
                "inputs": [
                    {"txhash": op.tx_hash, "index": op.index, "denomination": op.denomination, "address": op.address}
                    for op in inputs
                ],
                "outputs": outputs,
                "timestamp": int(time.time() * 1000),
            }

            print_info(f"💸 Sending {format_balance(amount)} to {recipient_code[:20]}...")
            self.ledger.reserve(inputs)
            try:
                signed = self.key_service.sign(payload)
                receipt = self.submitter.submit(signed, origin_zone)
            except Exception as e:
                self.ledger.release(inputs)
                for owner, zone, index in reversed(allocated):
                    self.channels.release_send_address(owner, zone, index)
                raise TransferFailed(f"Transfer submission failed: {e}", notification=notification, cause=e) from e

        print_success(f"✅ Payment sent: {receipt.hash}")
        return PaymentSent(
            amount=amount,
            recipient_payment_code=recipient_code,
            transfer=receipt,
            origin_zone=origin_zone,
            destination_zone=destination_zone,
            notification=notification,
            inputs=inputs,
            outputs=outputs,
        )
