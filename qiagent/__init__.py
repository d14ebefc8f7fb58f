"""
Qi Agent SDK - stealth payments on the Quai Qi UTXO ledger
"""
__version__ = "1.0.0"

from .config import NETWORK_CONFIGS, QiAgentConfig, resolve_config
from .core.balance import TotalBalance, ZoneBalance
from .core.denominations import DENOMINATIONS
from .core.errors import (
    InsufficientFunds,
    InvalidCounterpartyCode,
    InvalidDenomination,
    MailboxQueryFailed,
    MailboxWriteFailed,
    QiAgentError,
    ScanFailed,
    SerializationError,
    TransferFailed,
)
from .core.events import PaymentReceived
from .core.payments import PaymentSent
from .core.sync import SyncReport
from .core.wallet import QiAgentWallet
from .core.zones import ALL_ZONES, Zone
from .network.gateway import QuaiGateway
from .network.memory import InMemoryNetwork

__all__ = [
    'QiAgentWallet',
    'QiAgentConfig',
    'NETWORK_CONFIGS',
    'resolve_config',
    'Zone',
    'ALL_ZONES',
    'DENOMINATIONS',
    'PaymentReceived',
    'PaymentSent',
    'SyncReport',
    'ZoneBalance',
    'TotalBalance',
    'QuaiGateway',
    'InMemoryNetwork',
    'QiAgentError',
    'InvalidCounterpartyCode',
    'InvalidDenomination',
    'MailboxQueryFailed',
    'MailboxWriteFailed',
    'ScanFailed',
    'InsufficientFunds',
    'TransferFailed',
    'SerializationError',
]
