"""
HTTP ledger gateway client.

Speaks to a zone-aware REST gateway in front of the Quai nodes and the
mailbox contract:

    GET  /{zone}/height                              -> {"height": n}
    GET  /{zone}/outpoints/{address}                 -> {"outpoints": [...]}
    POST /{zone}/transactions                        -> {"hash", "confirmed", "blockNumber"}
    POST /mailbox/{mailbox}/notify                   -> {"hash"}
    GET  /mailbox/{mailbox}/notifications/{receiver} -> {"senders": [...]}
    GET  /mailbox/{mailbox}/events?fromBlock=n       -> {"events": [...], "lastBlock": n}
    GET  /receipts/{hash}                            -> {"status", "blockNumber"}

Transport failures raise GatewayError; nothing here turns an error into an
empty result.
"""
import threading
import time
from typing import Callable, Dict, List, Optional

import requests

from ..core.errors import GatewayError
from ..core.interfaces import (
    ChainOutput,
    ChainQueryService,
    NotificationReceipt,
    NotificationRegistry,
    SignedTransaction,
    TransactionSubmitter,
    TransferReceipt,
)
from ..core.zones import Zone, parse_zone
from ..utils.console import print_debug, print_warn
from ..utils.validation import is_valid_address

USER_AGENT = "QiAgent/1.0"


class QuaiGateway(ChainQueryService, TransactionSubmitter, NotificationRegistry):
    def __init__(self, endpoint_url: str, mailbox_address: str = "", timeout: float = 10,
                 poll_interval: float = 2.0):
        self.endpoint_url = endpoint_url.rstrip("/")
        self.mailbox_address = mailbox_address
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}

    def _url(self, path: str) -> str:
        return f"{self.endpoint_url}{path}"

    def _handle(self, url: str, response) -> Dict:
        if response.status_code not in (200, 201):
            raise GatewayError(f"HTTP error {response.status_code} from {url}: {response.text[:200]}",
                               status_code=response.status_code)
        try:
            return response.json()
        except ValueError:
            raise GatewayError(f"Invalid JSON from {url}", status_code=response.status_code)

    def _get(self, path: str, params: Optional[Dict] = None) -> Dict:
        url = self._url(path)
        try:
            response = requests.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise GatewayError(f"Request timeout to {url}")
        except requests.exceptions.ConnectionError:
            raise GatewayError(f"Cannot connect to {url}")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Request to {url} failed: {e}")
        return self._handle(url, response)

    def _post(self, path: str, data: Dict) -> Dict:
        url = self._url(path)
        try:
            response = requests.post(url, json=data, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise GatewayError(f"Request timeout to {url}")
        except requests.exceptions.ConnectionError:
            raise GatewayError(f"Cannot connect to {url}")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"Request to {url} failed: {e}")
        return self._handle(url, response)

    def check_network_connection(self) -> bool:
        try:
            self._get("/health")
            return True
        except GatewayError:
            return False

    # =========================================================================
    # Chain query
    # =========================================================================

    def get_block_height(self, zone: Zone) -> int:
        zone = parse_zone(zone)
        data = self._get(f"/{zone.slug}/height")
        if "height" not in data:
            raise GatewayError(f"Height missing from {zone} response")
        return int(data["height"])

    def get_unspent_outputs(self, address: str, zone: Zone) -> List[ChainOutput]:
        zone = parse_zone(zone)
        if not is_valid_address(address):
            raise GatewayError(f"Invalid address: {address!r}")
        data = self._get(f"/{zone.slug}/outpoints/{address}")
        try:
            return [ChainOutput.from_dict(item) for item in data.get("outpoints", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Malformed outpoints for {address}: {e}")

    # =========================================================================
    # Transaction submission
    # =========================================================================

    def submit(self, signed_tx: SignedTransaction, zone: Zone) -> TransferReceipt:
        zone = parse_zone(zone)
        data = self._post(f"/{zone.slug}/transactions", signed_tx.to_dict())
        if data.get("error"):
            raise GatewayError(f"Transaction rejected: {data['error']}")
        print_debug(f"Gateway accepted transaction {data.get('hash', signed_tx.hash)}")
        return TransferReceipt(
            hash=data.get("hash", signed_tx.hash),
            confirmed=bool(data.get("confirmed", False)),
            block_number=data.get("blockNumber"),
        )

    # =========================================================================
    # Notification registry
    # =========================================================================

    def _mailbox_path(self, suffix: str) -> str:
        if not self.mailbox_address:
            raise GatewayError("No mailbox contract address configured")
        return f"/mailbox/{self.mailbox_address}{suffix}"

    def notify(self, sender_code: str, receiver_code: str) -> str:
        data = self._post(self._mailbox_path("/notify"), {"sender": sender_code, "receiver": receiver_code})
        tx_hash = data.get("hash")
        if not tx_hash:
            raise GatewayError(f"Mailbox rejected notification: {data.get('error', 'no hash returned')}")
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> NotificationReceipt:
        deadline = time.time() + timeout
        while True:
            data = self._get(f"/receipts/{tx_hash}")
            status = data.get("status", "pending")
            if status == "confirmed":
                return NotificationReceipt(
                    tx_hash=tx_hash,
                    sender=data.get("sender", ""),
                    receiver=data.get("receiver", ""),
                    confirmed=True,
                    block_number=data.get("blockNumber"),
                )
            if status == "failed":
                raise GatewayError(f"Transaction {tx_hash} reverted")
            if time.time() >= deadline:
                raise GatewayError(f"Timed out waiting for {tx_hash}")
            time.sleep(self.poll_interval)

    def get_notifications(self, receiver_code: str) -> List[str]:
        data = self._get(self._mailbox_path(f"/notifications/{receiver_code}"))
        senders = data.get("senders")
        if not isinstance(senders, list):
            raise GatewayError("Malformed notifications response")
        return [str(s) for s in senders]

    def subscribe(self, listener: Callable[[str, str], None]) -> Callable[[], None]:
        """Poll the gateway's NotificationSent log on a background thread."""
        stop = threading.Event()
        state = {"from_block": None}

        def poll_loop():
            while not stop.is_set():
                try:
                    params = {} if state["from_block"] is None else {"fromBlock": state["from_block"]}
                    data = self._get(self._mailbox_path("/events"), params=params)
                    first_poll = state["from_block"] is None
                    state["from_block"] = int(data.get("lastBlock", 0)) + 1
                    if not first_poll:
                        for event in data.get("events", []):
                            try:
                                listener(event["sender"], event["receiver"])
                            except Exception as e:
                                print_warn(f"⚠️  Notification listener error: {e}")
                except GatewayError as e:
                    print_warn(f"⚠️  Notification event poll failed: {e}")
                stop.wait(self.poll_interval)

        thread = threading.Thread(target=poll_loop, name="qiagent-mailbox-events", daemon=True)
        thread.start()

        def unsubscribe() -> None:
            stop.set()

        return unsubscribe
