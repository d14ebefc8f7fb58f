"""
QiAgentWallet: the public face of the SDK.

Composes identity, channels, mailbox, scanner, orchestrator, balances and the
send flow over one set of ledger services (an HTTP gateway, or the in-process
devnet for the ``local`` network).
"""
import time
from typing import Callable, List, Optional, Tuple, Union

from .balance import BalanceAggregator, TotalBalance, ZoneBalance
from .channels import Channel, ChannelManager
from .errors import MailboxQueryFailed, SerializationError, SyncInProgress
from .events import PaymentReceived, Subscription
from .keys import Identity, LocalKeyService
from .ledger import LedgerState, Outpoint
from .mailbox import MailboxClient
from .payments import PaymentSender, PaymentSent
from .scanner import ScanReport, UTXOScanner
from .sync import SyncOrchestrator, SyncPoller, SyncReport
from .zones import ALL_ZONES, Zone, parse_zone
from ..config import QiAgentConfig, resolve_config
from ..network.gateway import QuaiGateway
from ..network.memory import InMemoryNetwork
from ..storage.snapshot import (
    WalletSnapshot,
    decode_snapshot,
    encode_snapshot,
    identity_reference,
    load_snapshot,
    save_snapshot,
    unlock_identity,
)
from ..utils.console import print_debug, print_info, print_success, print_warn
from ..utils.formatting import format_balance, parse_qi


def build_network(config: QiAgentConfig):
    """Ledger services for a resolved config."""
    if config.network == "local" or str(config.rpc_url).startswith("memory://"):
        return InMemoryNetwork()
    return QuaiGateway(config.rpc_url, mailbox_address=config.mailbox_address, timeout=config.request_timeout)


class QiAgentWallet:
    def __init__(self, identity: Identity, config: Optional[QiAgentConfig] = None, network=None,
                 key_service=None):
        self.config = resolve_config(config)
        self.identity = identity
        self.key_service = key_service or LocalKeyService(identity)
        self.network = network if network is not None else build_network(self.config)

        self.channels = ChannelManager(self.key_service)
        self.ledger = LedgerState(ALL_ZONES)
        self.mailbox = MailboxClient(self.network, self.config.mailbox_address, self.config.notify_timeout)
        self.scanner = UTXOScanner(
            self.network, self.channels, self.ledger,
            gap_limit=self.config.gap_limit,
            max_workers=self.config.scan_workers,
        )
        self.orchestrator = SyncOrchestrator(
            self.channels, self.mailbox, self.scanner,
            default_zones=[self.config.default_zone],
            retry_failed_channels=self.config.retry_failed_channels,
        )
        self.balances = BalanceAggregator(self.ledger, ALL_ZONES)
        self.payments = PaymentSender(self.channels, self.mailbox, self.ledger, self.network, self.key_service)

        self.created_at = time.time()
        self.last_activity = self.created_at
        self._poller: Optional[SyncPoller] = None
        self._push_unsubscribe: Optional[Callable[[], None]] = None

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def create(cls, config: Optional[QiAgentConfig] = None, network=None) -> Tuple["QiAgentWallet", str]:
        """New wallet with a fresh identity. Returns (wallet, seed hex); keep the seed secret."""
        identity = Identity.generate()
        wallet = cls(identity, config=config, network=network)
        print_success(f"✅ Created wallet {identity.fingerprint}")
        return wallet, identity.seed_hex

    @classmethod
    def from_seed(cls, seed: str, config: Optional[QiAgentConfig] = None, network=None,
                  sync: bool = True) -> "QiAgentWallet":
        """Import a wallet from its seed and (by default) run an initial sync."""
        wallet = cls(Identity.from_seed(seed), config=config, network=network)
        print_info(f"📥 Imported wallet {wallet.identity.fingerprint}")
        if sync:
            wallet.sync()
        return wallet

    # =========================================================================
    # Identity and addresses
    # =========================================================================

    def get_payment_code(self) -> str:
        return self.channels.payment_code

    def get_receive_address(self, zone=None) -> str:
        """Next unused plain receive address of this wallet in ``zone``."""
        zone = parse_zone(zone) if zone is not None else self.config.default_zone
        _, address = self.channels.allocate_send_address(self.channels.self_channel, zone)
        return address

    # =========================================================================
    # Balances
    # =========================================================================

    def get_zone_balance(self, zone=None) -> ZoneBalance:
        zone = parse_zone(zone) if zone is not None else self.config.default_zone
        return self.balances.balance(zone)

    def get_balance(self, zone=None) -> int:
        """Balance of ``zone`` in qits (default zone if omitted)."""
        return self.get_zone_balance(zone).balance

    def get_balance_display(self, zone=None) -> str:
        return format_balance(self.get_balance(zone))

    def get_total_balance(self) -> TotalBalance:
        return self.balances.total_balance()

    def get_outpoints(self, zone=None) -> List[Outpoint]:
        zone = parse_zone(zone) if zone is not None else self.config.default_zone
        return self.ledger.outpoints(zone)

    # =========================================================================
    # Sending
    # =========================================================================

    def send(self, recipient_code: str, amount: int, origin_zone=None, destination_zone=None) -> PaymentSent:
        """Send ``amount`` qits privately to a payment code, notifying it first if needed."""
        origin = parse_zone(origin_zone) if origin_zone is not None else self.config.default_zone
        result = self.payments.send(recipient_code, amount, origin, destination_zone)
        self._touch()
        return result

    def send_qi(self, recipient_code: str, amount: Union[str, int, float], origin_zone=None,
                destination_zone=None) -> PaymentSent:
        return self.send(recipient_code, parse_qi(amount), origin_zone, destination_zone)

    # =========================================================================
    # Sync
    # =========================================================================

    def sync(self, zone=None, wait: bool = True) -> SyncReport:
        """Discover new senders, open their channels, then scan.

        With ``wait=False`` raises SyncInProgress instead of waiting for a
        cycle that is already running.
        """
        if wait:
            report = self.orchestrator.sync(zone)
        else:
            report = self.orchestrator.try_sync(zone)
            if report is None:
                raise SyncInProgress("A sync cycle is already running")
        self._touch()
        return report

    def discover_senders(self, wait: bool = True) -> List[str]:
        senders = self.orchestrator.discover_senders(wait=wait)
        self._touch()
        return senders

    def scan_all_zones(self) -> ScanReport:
        """Scan every zone against the channels opened so far."""
        report = self.orchestrator.scan(ALL_ZONES)
        self._touch()
        return report

    def start_polling(self, interval: Optional[float] = None, zones=None) -> SyncPoller:
        if self._poller is not None and self._poller.running:
            return self._poller
        self._poller = SyncPoller(self.orchestrator, interval or self.config.polling_interval, zones)
        self._poller.start()
        return self._poller

    def stop_polling(self, wait: bool = False) -> None:
        if self._poller is not None:
            self._poller.stop(wait=wait)

    @property
    def is_polling(self) -> bool:
        return self._poller is not None and self._poller.running

    @property
    def poller(self) -> Optional[SyncPoller]:
        return self._poller

    # =========================================================================
    # Events and senders
    # =========================================================================

    def on_payment_received(self, callback: Callable[[PaymentReceived], object]) -> Subscription:
        return self.orchestrator.payment_events.subscribe(callback)

    def on_sender_discovered(self, callback: Callable[[str], object]) -> Subscription:
        return self.orchestrator.sender_events.subscribe(callback)

    def enable_push_discovery(self) -> None:
        """Run sender discovery whenever the mailbox reports a notification to us."""
        if self._push_unsubscribe is not None:
            return

        def on_notification(sender: str, receiver: str) -> None:
            try:
                self.orchestrator.discover_senders(wait=False)
            except SyncInProgress:
                print_debug(f"Sync in flight, leaving {sender[:20]}... to the next cycle")
            except MailboxQueryFailed as e:
                print_warn(f"⚠️  Push discovery failed: {e}")

        self._push_unsubscribe = self.mailbox.on_notification(self.get_payment_code(), on_notification)

    def disable_push_discovery(self) -> None:
        if self._push_unsubscribe is not None:
            self._push_unsubscribe()
            self._push_unsubscribe = None

    def get_known_senders(self) -> List[str]:
        return self.orchestrator.known_senders

    def import_sender(self, payment_code: str) -> Channel:
        return self.orchestrator.import_sender(payment_code)

    def close(self) -> None:
        self.stop_polling()
        self.disable_push_discovery()

    def _touch(self) -> None:
        self.last_activity = time.time()

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_snapshot(self, password: Optional[str] = None) -> WalletSnapshot:
        with self.ledger.lock:
            last_scanned = {
                zone.value: cursor.block_height
                for zone, cursor in self.ledger.cursors().items()
                if cursor.block_height >= 0
            }
            outpoints = [op.to_dict() for zone in self.ledger.zones for op in self.ledger.outpoints(zone)]
            channels = {
                channel.counterparty_code: channel.cursors_to_dict()
                for channel in self.channels.all_channels()
                if channel.zones
            }
        return WalletSnapshot(
            wallet=identity_reference(self.identity, password),
            payment_code=self.get_payment_code(),
            known_senders=self.get_known_senders(),
            last_scanned_blocks=last_scanned,
            channels=channels,
            outpoints=outpoints,
            created_at=int(self.created_at * 1000),
            last_activity=int(self.last_activity * 1000),
        )

    def serialize(self, password: Optional[str] = None, fmt: str = "json") -> bytes:
        return encode_snapshot(self.to_snapshot(password), fmt)

    @classmethod
    def from_snapshot(cls, snapshot: WalletSnapshot, seed: Optional[str] = None, password: Optional[str] = None,
                      config: Optional[QiAgentConfig] = None, network=None) -> "QiAgentWallet":
        identity = unlock_identity(snapshot.wallet, seed=seed, password=password)
        snapshot.verify(identity)
        wallet = cls(identity, config=config, network=network)

        try:
            restored = [Outpoint.from_dict(item) for item in snapshot.outpoints]
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Malformed outpoint in snapshot: {e}")

        wallet.orchestrator.restore_known_senders(snapshot.known_senders)
        for code, cursors in snapshot.channels.items():
            channel = wallet.channels.register(code)
            try:
                channel.restore_cursors(cursors)
            except (TypeError, ValueError, AttributeError) as e:
                raise SerializationError(f"Malformed channel cursors for {code[:20]}...: {e}")
        for zone_key, height in snapshot.last_scanned_blocks.items():
            wallet.ledger.restore_cursor(zone_key, height)
        wallet.ledger.restore_outpoints(restored)

        if snapshot.created_at:
            wallet.created_at = snapshot.created_at / 1000
        if snapshot.last_activity:
            wallet.last_activity = snapshot.last_activity / 1000
        return wallet

    @classmethod
    def deserialize(cls, data, seed: Optional[str] = None, password: Optional[str] = None,
                    config: Optional[QiAgentConfig] = None, network=None) -> "QiAgentWallet":
        """Rebuild a wallet from ``serialize`` output. Raises SerializationError."""
        return cls.from_snapshot(decode_snapshot(data), seed=seed, password=password, config=config,
                                 network=network)

    def save_to_file(self, path: str, password: Optional[str] = None) -> str:
        return save_snapshot(self.to_snapshot(password), path)

    @classmethod
    def load_from_file(cls, path: str, seed: Optional[str] = None, password: Optional[str] = None,
                       config: Optional[QiAgentConfig] = None, network=None) -> "QiAgentWallet":
        return cls.from_snapshot(load_snapshot(path), seed=seed, password=password, config=config,
                                 network=network)

    def __repr__(self) -> str:
        return f"QiAgentWallet({self.identity.fingerprint}, network={self.config.network})"
