import pytest
import tempfile

from qiagent.config import QiAgentConfig
from qiagent.core.channels import ChannelManager
from qiagent.core.keys import Identity, LocalKeyService
from qiagent.core.ledger import LedgerState
from qiagent.core.wallet import QiAgentWallet
from qiagent.core.zones import Zone
from qiagent.network.memory import InMemoryNetwork

ALICE_SEED = "11" * 32
BOB_SEED = "22" * 32
CAROL_SEED = "33" * 32


@pytest.fixture(autouse=True)
def quiet_env(monkeypatch):
    """Keep console output and runtime profiles out of the test run"""
    monkeypatch.setenv("QIAGENT_QUIET", "1")
    monkeypatch.setenv("QIAGENT_PROFILE", "")


@pytest.fixture
def temp_dir():
    """Create temporary directory for test data"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def local_config():
    return QiAgentConfig(network="local", gap_limit=5, scan_workers=3)


@pytest.fixture
def network():
    return InMemoryNetwork()


@pytest.fixture
def alice(network, local_config):
    return QiAgentWallet(Identity.from_seed(ALICE_SEED), config=local_config, network=network)


@pytest.fixture
def bob(network, local_config):
    return QiAgentWallet(Identity.from_seed(BOB_SEED), config=local_config, network=network)


@pytest.fixture
def funded_alice(alice, network):
    """Alice holding 5000 + 1000 + 1000 + 10 qits in Cyprus1"""
    network.fund(alice.get_receive_address(Zone.CYPRUS1), [7, 6, 6, 2])
    alice.sync(Zone.CYPRUS1)
    return alice


@pytest.fixture
def key_services():
    return (
        LocalKeyService(Identity.from_seed(ALICE_SEED)),
        LocalKeyService(Identity.from_seed(BOB_SEED)),
    )


@pytest.fixture
def channel_managers(key_services):
    return tuple(ChannelManager(ks) for ks in key_services)


@pytest.fixture
def ledger():
    return LedgerState()
