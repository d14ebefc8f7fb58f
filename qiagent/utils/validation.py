import re
from typing import Optional

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$", re.IGNORECASE)
_PAYMENT_CODE_RE = re.compile(r"^PM8T[A-Z2-7]{16,128}$")
_SEED_RE = re.compile(r"^[0-9a-f]{64}$", re.IGNORECASE)

MAX_TEXT_LEN = 256
MAX_SNAPSHOT_BYTES = 8 * 1024 * 1024


def is_safe_text(value: Optional[str], max_len: int = MAX_TEXT_LEN) -> bool:
    if value is None:
        return False
    text = str(value)
    if len(text) == 0 or len(text) > max_len:
        return False
    for ch in text:
        code = ord(ch)
        if code < 32 or code == 127:
            return False
    return True


def is_valid_address(addr: Optional[str]) -> bool:
    if not is_safe_text(addr, max_len=64):
        return False
    return bool(_ADDRESS_RE.fullmatch(str(addr)))


def looks_like_payment_code(code: Optional[str]) -> bool:
    """Shape check only; checksum verification lives in the key module."""
    if not is_safe_text(code, max_len=160):
        return False
    return bool(_PAYMENT_CODE_RE.fullmatch(str(code)))


def is_valid_seed(value: Optional[str]) -> bool:
    if value is None:
        return False
    return bool(_SEED_RE.fullmatch(str(value).strip()))
