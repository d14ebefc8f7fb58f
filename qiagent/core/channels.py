"""
Payment channels.

A channel is this wallet's relationship with one counterparty payment code.
Opening it performs key agreement with the counterparty's public material;
from the shared secret both sides derive the same address sequences:

    receive sequence  counterparty -> me   (what the scanner watches)
    send sequence     me -> counterparty   (where payments to them go)

Alice's send sequence to Bob is exactly Bob's receive sequence from Alice.
The wallet's own code is opened as the "self" channel and backs the plain
receive/change addresses.
"""
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import InvalidCounterpartyCode
from .interfaces import KeyService
from .keys import compute_shared_secret, decode_payment_code, encode_payment_code
from .zones import Zone, parse_zone
from ..utils.console import print_debug, print_success
from ..utils.hash import sm3_concat

RECEIVE = "receive"
SEND = "send"

_ADDRESS_DOMAIN = b"qiagent/address"
_ADDRESS_BODY_LEN = 19


class ChannelState(Enum):
    UNOPENED = "unopened"
    OPEN = "open"


@dataclass
class ZoneCursor:
    """Per-zone progress along a channel's address sequences."""
    cursor: int = -1      # highest receive index derived
    last_used: int = -1   # highest receive index that ever held outputs
    next_send: int = 0    # next unallocated send index

    def to_dict(self) -> Dict:
        return {"cursor": self.cursor, "lastUsed": self.last_used, "nextSend": self.next_send}

    @classmethod
    def from_dict(cls, data: Dict) -> "ZoneCursor":
        return cls(
            cursor=int(data.get("cursor", -1)),
            last_used=int(data.get("lastUsed", -1)),
            next_send=int(data.get("nextSend", 0)),
        )


class Channel:
    def __init__(self, counterparty_code: str, local_public: bytes, is_self: bool = False):
        self.counterparty_code = counterparty_code
        self.local_public = local_public
        self.is_self = is_self
        self.state = ChannelState.UNOPENED
        self.counterparty_public: Optional[bytes] = None
        self.opened_at: Optional[float] = None
        self.zones: Dict[Zone, ZoneCursor] = {}
        self._shared_secret: Optional[bytes] = None
        self._address_cache: Dict[Tuple[Zone, str, int], str] = {}

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    def zone_cursor(self, zone: Zone) -> ZoneCursor:
        zone = parse_zone(zone)
        if zone not in self.zones:
            self.zones[zone] = ZoneCursor()
        return self.zones[zone]

    def cursor(self, zone: Zone) -> int:
        return self.zone_cursor(zone).cursor

    def advance_cursor(self, zone: Zone, index: int) -> int:
        """Raise the receive cursor; it never moves backwards."""
        zc = self.zone_cursor(zone)
        if index > zc.cursor:
            zc.cursor = index
        return zc.cursor

    def mark_used(self, zone: Zone, index: int) -> None:
        zc = self.zone_cursor(zone)
        if index > zc.last_used:
            zc.last_used = index
        self.advance_cursor(zone, index)

    def _open(self, counterparty_public: bytes, shared_secret: bytes) -> None:
        self.counterparty_public = counterparty_public
        self._shared_secret = shared_secret
        self.state = ChannelState.OPEN
        self.opened_at = time.time()

    def cursors_to_dict(self) -> Dict[str, Dict]:
        return {zone.value: zc.to_dict() for zone, zc in self.zones.items()}

    def restore_cursors(self, data: Dict[str, Dict]) -> None:
        for zone_key, cursor_data in (data or {}).items():
            restored = ZoneCursor.from_dict(cursor_data)
            zc = self.zone_cursor(parse_zone(zone_key))
            zc.cursor = max(zc.cursor, restored.cursor)
            zc.last_used = max(zc.last_used, restored.last_used)
            zc.next_send = max(zc.next_send, restored.next_send)

    def __repr__(self) -> str:
        label = "self" if self.is_self else self.counterparty_code[:16] + "..."
        return f"Channel({label}, {self.state.value})"


def derive_address(channel: Channel, zone: Zone, index: int, direction: str = RECEIVE) -> str:
    """Address ``index`` of a channel's sequence in ``zone``.

    Pure in (shared secret, both public keys, zone, index, direction); results
    are cached on the channel but recomputing always yields the same address.
    """
    if not channel.is_open:
        raise ValueError(f"Channel with {channel.counterparty_code[:16]}... is not open")
    if index < 0:
        raise ValueError("Address index must not be negative")
    zone = parse_zone(zone)
    key = (zone, direction, index)
    cached = channel._address_cache.get(key)
    if cached is not None:
        return cached

    if direction == RECEIVE:
        sender, receiver = channel.counterparty_public, channel.local_public
    elif direction == SEND:
        sender, receiver = channel.local_public, channel.counterparty_public
    else:
        raise ValueError(f"Unknown direction: {direction!r}")

    digest = sm3_concat([
        _ADDRESS_DOMAIN,
        channel._shared_secret,
        sender,
        receiver,
        bytes([zone.prefix_byte]),
        index.to_bytes(4, "big"),
    ])
    address = "0x" + bytes([zone.prefix_byte]).hex() + digest[:_ADDRESS_BODY_LEN].hex()
    channel._address_cache[key] = address
    return address


class ChannelManager:
    """Owns this identity's channels, keyed by counterparty payment code."""

    def __init__(self, key_service: KeyService):
        self.key_service = key_service
        self.local_public = key_service.derive_public_material()
        self.payment_code = encode_payment_code(self.local_public)
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.RLock()
        self.self_channel = self.open_channel(self.payment_code)

    def register(self, counterparty_code: str) -> Channel:
        """Create an unopened channel record, or return the existing one."""
        code = str(counterparty_code).strip()
        with self._lock:
            channel = self._channels.get(code)
            if channel is None:
                channel = Channel(code, self.local_public, is_self=(code == self.payment_code))
                self._channels[code] = channel
            return channel

    def open_channel(self, counterparty_code: str) -> Channel:
        """Open (or return the already open) channel with a counterparty.

        Idempotent: an open channel is returned untouched. Raises
        InvalidCounterpartyCode for malformed codes; the caller decides
        whether that aborts anything.
        """
        code = str(counterparty_code).strip() if counterparty_code is not None else ""
        counterparty_public = decode_payment_code(code)
        with self._lock:
            existing = self._channels.get(code)
            if existing is not None and existing.is_open:
                return existing
        shared_secret = compute_shared_secret(self.key_service, code, counterparty_public)
        with self._lock:
            channel = self.register(code)
            if not channel.is_open:
                channel._open(counterparty_public, shared_secret)
                if channel.is_self:
                    print_debug("Opened self channel")
                else:
                    print_success(f"🔗 Opened payment channel with {code[:20]}...")
            return channel

    def get(self, counterparty_code: str) -> Optional[Channel]:
        with self._lock:
            return self._channels.get(str(counterparty_code).strip())

    def open_channels(self) -> List[Channel]:
        """Open channels in opening order, self channel first."""
        with self._lock:
            return [c for c in self._channels.values() if c.is_open]

    def unopened(self) -> List[Channel]:
        with self._lock:
            return [c for c in self._channels.values() if not c.is_open]

    def counterparties(self) -> List[str]:
        with self._lock:
            return [code for code, c in self._channels.items() if not c.is_self]

    def all_channels(self) -> List[Channel]:
        with self._lock:
            return list(self._channels.values())

    def allocate_send_address(self, channel: Channel, zone: Zone) -> Tuple[int, str]:
        """Hand out the next unused address on ``channel`` for a payment in ``zone``.

        For counterparties this walks the send sequence. For the self channel
        send and receive sequences coincide, so allocation also skips past
        indices already seen holding outputs.
        """
        with self._lock:
            zc = channel.zone_cursor(zone)
            index = zc.next_send
            if channel.is_self:
                index = max(index, zc.last_used + 1)
            zc.next_send = index + 1
            return index, derive_address(channel, zone, index, SEND)

    def release_send_address(self, channel: Channel, zone: Zone, index: int) -> bool:
        """Give back ``index`` if it is still the latest allocation on ``channel``.

        Used when a transfer never reached the chain, so unsent indices do not
        open a gap past the counterparty's scan window.
        """
        with self._lock:
            zc = channel.zone_cursor(zone)
            if zc.next_send != index + 1:
                return False
            zc.next_send = index
            return True
