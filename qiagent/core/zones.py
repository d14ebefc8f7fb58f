"""Ledger zones (shards) of the Quai network."""
from enum import Enum
from typing import List, Union

from .errors import InvalidZone


class Zone(str, Enum):
    """A zone, valued by its two-nibble prefix (region, zone)."""
    CYPRUS1 = "0x00"
    CYPRUS2 = "0x01"
    CYPRUS3 = "0x02"
    PAXOS1 = "0x10"
    PAXOS2 = "0x11"
    PAXOS3 = "0x12"
    HYDRA1 = "0x20"
    HYDRA2 = "0x21"
    HYDRA3 = "0x22"

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    @property
    def prefix_byte(self) -> int:
        return int(self.value, 16)

    @property
    def slug(self) -> str:
        return self.name.lower()

    def __str__(self) -> str:
        return self.display_name


ALL_ZONES: List[Zone] = list(Zone)


def parse_zone(value: Union[str, Zone]) -> Zone:
    """Accept a Zone, its value ("0x00") or its name ("Cyprus1", "cyprus1")."""
    if isinstance(value, Zone):
        return value
    text = str(value).strip()
    for zone in Zone:
        if text.lower() in (zone.value, zone.slug):
            return zone
    raise InvalidZone(f"Unknown zone: {value!r}")


def zone_of_address(address: str) -> Zone:
    """Zone an address belongs to, read from its first byte."""
    text = str(address).lower()
    if not text.startswith("0x") or len(text) < 4:
        raise InvalidZone(f"Address has no zone prefix: {address!r}")
    return parse_zone("0x" + text[2:4])
