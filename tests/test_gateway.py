import pytest
import requests
from unittest.mock import Mock, patch

from qiagent.core.errors import GatewayError, MailboxQueryFailed
from qiagent.core.interfaces import SignedTransaction
from qiagent.core.mailbox import MailboxClient
from qiagent.core.zones import Zone
from qiagent.network.gateway import QuaiGateway

BASE = "https://gateway.test"
MAILBOX = "0x004C82298b3ED69a949008d7037918B13A4260c5"


def _response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = str(payload)
    return response


@pytest.fixture
def gateway():
    return QuaiGateway(BASE, mailbox_address=MAILBOX, timeout=5, poll_interval=0)


class TestQuaiGateway:
    @patch('qiagent.network.gateway.requests.get')
    def test_block_height(self, mock_get, gateway):
        """Test block height retrieval for a zone"""
        mock_get.return_value = _response(payload={'height': 1500})

        assert gateway.get_block_height(Zone.PAXOS2) == 1500
        url = mock_get.call_args[0][0]
        assert url == f"{BASE}/paxos2/height"
        assert mock_get.call_args[1]['timeout'] == 5

    @patch('qiagent.network.gateway.requests.get')
    def test_unspent_outputs(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'outpoints': [
            {'txhash': '0xabc', 'index': 0, 'denomination': 6, 'lock': 0, 'blockNumber': 12},
            {'txHash': '0xdef', 'index': 3, 'denomination': 2},
        ]})

        outputs = gateway.get_unspent_outputs("0x00" + "ab" * 19, Zone.CYPRUS1)

        assert [(o.tx_hash, o.index, o.denomination) for o in outputs] == [('0xabc', 0, 6), ('0xdef', 3, 2)]
        assert outputs[0].block_number == 12
        assert mock_get.call_args[0][0].startswith(f"{BASE}/cyprus1/outpoints/0x00")

    @patch('qiagent.network.gateway.requests.get')
    def test_malformed_outputs(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'outpoints': [{'txhash': '0xabc'}]})
        with pytest.raises(GatewayError):
            gateway.get_unspent_outputs("0x00" + "ab" * 19, Zone.CYPRUS1)

    @patch('qiagent.network.gateway.requests.get')
    def test_http_error_status(self, mock_get, gateway):
        mock_get.return_value = _response(status_code=503, payload={'error': 'busy'})
        with pytest.raises(GatewayError) as exc:
            gateway.get_block_height(Zone.CYPRUS1)
        assert exc.value.status_code == 503

    @patch('qiagent.network.gateway.requests.get')
    def test_connection_error(self, mock_get, gateway):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(GatewayError):
            gateway.get_block_height(Zone.CYPRUS1)
        assert gateway.check_network_connection() is False

    @patch('qiagent.network.gateway.requests.get')
    def test_timeout(self, mock_get, gateway):
        mock_get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(GatewayError):
            gateway.get_notifications("PM8TRECEIVER")

    @patch('qiagent.network.gateway.requests.get')
    def test_invalid_json(self, mock_get, gateway):
        response = _response()
        response.json.side_effect = ValueError("no json")
        mock_get.return_value = response
        with pytest.raises(GatewayError):
            gateway.get_block_height(Zone.CYPRUS1)

    @patch('qiagent.network.gateway.requests.post')
    def test_submit(self, mock_post, gateway):
        mock_post.return_value = _response(payload={'hash': '0xfeed', 'confirmed': True, 'blockNumber': 7})
        signed = SignedTransaction(payload={'type': 'qi_transfer'}, hash='0xfeed', signature='aa', public_key='bb')

        receipt = gateway.submit(signed, Zone.HYDRA1)

        assert receipt.hash == '0xfeed'
        assert receipt.confirmed
        assert mock_post.call_args[0][0] == f"{BASE}/hydra1/transactions"
        body = mock_post.call_args[1]['json']
        assert body['signature'] == 'aa'
        assert body['publicKey'] == 'bb'
        assert body['type'] == 'qi_transfer'

    @patch('qiagent.network.gateway.requests.post')
    def test_submit_rejected(self, mock_post, gateway):
        mock_post.return_value = _response(payload={'error': 'double spend'})
        signed = SignedTransaction(payload={}, hash='0x1', signature='', public_key='')
        with pytest.raises(GatewayError):
            gateway.submit(signed, Zone.CYPRUS1)

    @patch('qiagent.network.gateway.requests.post')
    def test_notify(self, mock_post, gateway):
        mock_post.return_value = _response(payload={'hash': '0xnote'})

        assert gateway.notify("PM8TSENDER", "PM8TRECEIVER") == '0xnote'
        assert mock_post.call_args[0][0] == f"{BASE}/mailbox/{MAILBOX}/notify"
        assert mock_post.call_args[1]['json'] == {'sender': 'PM8TSENDER', 'receiver': 'PM8TRECEIVER'}

    def test_notify_without_mailbox_address(self):
        with pytest.raises(GatewayError):
            QuaiGateway(BASE).notify("PM8TSENDER", "PM8TRECEIVER")

    @patch('qiagent.network.gateway.requests.get')
    def test_wait_for_receipt_polls_until_confirmed(self, mock_get, gateway):
        mock_get.side_effect = [
            _response(payload={'status': 'pending'}),
            _response(payload={'status': 'confirmed', 'blockNumber': 44}),
        ]
        receipt = gateway.wait_for_receipt('0xnote', timeout=10)
        assert receipt.confirmed
        assert receipt.block_number == 44
        assert mock_get.call_count == 2

    @patch('qiagent.network.gateway.requests.get')
    def test_wait_for_receipt_reverted(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'status': 'failed'})
        with pytest.raises(GatewayError):
            gateway.wait_for_receipt('0xnote', timeout=10)

    @patch('qiagent.network.gateway.requests.get')
    def test_wait_for_receipt_timeout(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'status': 'pending'})
        with pytest.raises(GatewayError):
            gateway.wait_for_receipt('0xnote', timeout=0)

    @patch('qiagent.network.gateway.requests.get')
    def test_get_notifications(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'senders': ['PM8TA', 'PM8TB', 'PM8TA']})
        assert gateway.get_notifications("PM8TRECEIVER") == ['PM8TA', 'PM8TB', 'PM8TA']
        assert mock_get.call_args[0][0] == f"{BASE}/mailbox/{MAILBOX}/notifications/PM8TRECEIVER"

    @patch('qiagent.network.gateway.requests.get')
    def test_mailbox_client_wraps_gateway_failure(self, mock_get, gateway):
        mock_get.return_value = _response(status_code=500, payload={'error': 'node down'})
        with pytest.raises(MailboxQueryFailed):
            MailboxClient(gateway, MAILBOX).list_notifications("PM8TRECEIVER")

    @patch('qiagent.network.gateway.requests.get')
    def test_malformed_notifications(self, mock_get, gateway):
        mock_get.return_value = _response(payload={'senders': None})
        with pytest.raises(GatewayError):
            gateway.get_notifications("PM8TRECEIVER")

    @patch('qiagent.network.gateway.requests.get')
    def test_invalid_address_never_queried(self, mock_get, gateway):
        with pytest.raises(GatewayError):
            gateway.get_unspent_outputs("0x00", Zone.CYPRUS1)
        mock_get.assert_not_called()
