import base64
from http.client import RemoteDisconnected
from unittest.mock import Mock

import pytest
import requests
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from urllib3.exceptions import MaxRetryError, NewConnectionError, ProtocolError

from app.core.errors import AmbiguousConfirmation, LedgerError, SettlementFailed
from app.services.ledger_client import RpcLedger


def _response(result=None, error=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.text = "body"
    body = {"jsonrpc": "2.0", "id": 1}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result
    response.json.return_value = body
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def rpc(session):
    return RpcLedger("http://rpc.test", timeout=1, poll_interval=0, session=session)


@pytest.fixture
def transaction():
    payer = Keypair()
    ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))
    message = Message.new_with_blockhash([ix], payer.pubkey(), Hash.new_unique())
    return Transaction([payer], message, message.recent_blockhash)


class TestCalls:
    def test_request_body(self, rpc, session):
        session.post.return_value = _response({"context": {"slot": 1}, "value": 5000})
        owner = Pubkey.new_unique()

        assert rpc.get_balance(owner) == 5000

        kwargs = session.post.call_args.kwargs
        assert session.post.call_args.args[0] == "http://rpc.test"
        assert kwargs["json"]["method"] == "getBalance"
        assert kwargs["json"]["params"][0] == str(owner)
        assert kwargs["timeout"] == 1

    def test_latest_blockhash(self, rpc, session):
        blockhash = Hash.new_unique()
        session.post.return_value = _response(
            {"value": {"blockhash": str(blockhash), "lastValidBlockHeight": 300}}
        )
        assert rpc.latest_blockhash() == (blockhash, 300)

    def test_token_account_data(self, rpc, session):
        raw = bytes(64) + (42).to_bytes(8, "little") + bytes(93)
        session.post.return_value = _response(
            {"value": [{"pubkey": "x", "account": {"data": [base64.b64encode(raw).decode(), "base64"]}}]}
        )
        assert rpc.get_token_account_data(Pubkey.new_unique(), Pubkey.new_unique()) == raw

    def test_token_account_absent(self, rpc, session):
        session.post.return_value = _response({"value": []})
        assert rpc.get_token_account_data(Pubkey.new_unique(), Pubkey.new_unique()) is None

    def test_history_sorted_by_slot(self, rpc, session):
        session.post.return_value = _response(
            [
                {"signature": "a", "slot": 5, "err": None},
                {"signature": "b", "slot": 9, "err": None},
                {"signature": "c", "slot": 7, "err": {"InstructionError": [0, "Custom"]}},
            ]
        )
        records = rpc.get_signatures_for_address(Pubkey.new_unique())
        assert [r.signature for r in records] == ["b", "c", "a"]
        assert records[1].err is not None

    def test_transport_error(self, rpc, session):
        session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(LedgerError):
            rpc.get_balance(Pubkey.new_unique())

    def test_http_error(self, rpc, session):
        session.post.return_value = _response(status_code=503)
        with pytest.raises(LedgerError):
            rpc.get_balance(Pubkey.new_unique())

    def test_rpc_error(self, rpc, session):
        session.post.return_value = _response(error={"code": -32602, "message": "bad params"})
        with pytest.raises(LedgerError):
            rpc.get_balance(Pubkey.new_unique())


class TestSendTransaction:
    def test_returns_signature(self, rpc, session, transaction):
        signature = transaction.signatures[0]
        session.post.return_value = _response(str(signature))

        assert rpc.send_transaction(transaction) == signature
        params = session.post.call_args.kwargs["json"]["params"]
        assert base64.b64decode(params[0]) == bytes(transaction)

    def test_rejection_is_settlement_failure(self, rpc, session, transaction):
        session.post.return_value = _response(
            error={"code": -32002, "message": "Transaction simulation failed"}
        )
        with pytest.raises(SettlementFailed):
            rpc.send_transaction(transaction)

    def test_read_timeout_is_ambiguous(self, rpc, session, transaction):
        session.post.side_effect = requests.ReadTimeout("slow")
        with pytest.raises(AmbiguousConfirmation) as exc_info:
            rpc.send_transaction(transaction)
        assert exc_info.value.signature == str(transaction.signatures[0])

    def test_connect_timeout_never_reached_node(self, rpc, session, transaction):
        session.post.side_effect = requests.ConnectTimeout("unreachable")
        with pytest.raises(SettlementFailed):
            rpc.send_transaction(transaction)

    def test_refused_connection_never_reached_node(self, rpc, session, transaction):
        refused = NewConnectionError(None, "Connection refused")
        session.post.side_effect = requests.ConnectionError(MaxRetryError(None, "/", refused))
        with pytest.raises(SettlementFailed):
            rpc.send_transaction(transaction)

    @pytest.mark.parametrize(
        "failure",
        [
            requests.ConnectionError(ProtocolError("Connection aborted.", RemoteDisconnected("closed"))),
            requests.ConnectionError("connection reset by peer"),
            requests.exceptions.ChunkedEncodingError("truncated"),
        ],
    )
    def test_dropped_connection_is_ambiguous(self, rpc, session, transaction, failure):
        session.post.side_effect = failure
        with pytest.raises(AmbiguousConfirmation) as exc_info:
            rpc.send_transaction(transaction)
        assert exc_info.value.signature == str(transaction.signatures[0])

    @pytest.mark.parametrize("status_code", [500, 502, 503, 504])
    def test_gateway_error_is_ambiguous(self, rpc, session, transaction, status_code):
        session.post.return_value = _response(status_code=status_code)
        with pytest.raises(AmbiguousConfirmation):
            rpc.send_transaction(transaction)

    def test_unparseable_answer_is_ambiguous(self, rpc, session, transaction):
        response = _response()
        response.json.side_effect = ValueError("not json")
        session.post.return_value = response
        with pytest.raises(AmbiguousConfirmation):
            rpc.send_transaction(transaction)


class TestConfirmTransaction:
    SIG = Signature.default()

    def test_confirmed_after_polling(self, rpc, session):
        session.post.side_effect = [
            _response({"value": [None]}),
            _response(10),  # block height still valid
            _response({"value": [{"confirmationStatus": "processed", "err": None}]}),
            _response({"value": [{"confirmationStatus": "confirmed", "err": None}]}),
        ]
        rpc.confirm_transaction(self.SIG, 100)
        assert session.post.call_count == 4

    def test_on_chain_error(self, rpc, session):
        session.post.return_value = _response(
            {"value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [1, "Custom"]}}]}
        )
        with pytest.raises(SettlementFailed):
            rpc.confirm_transaction(self.SIG, 100)

    def test_blockhash_expired(self, rpc, session):
        session.post.side_effect = [_response({"value": [None]}), _response(101)]
        with pytest.raises(AmbiguousConfirmation):
            rpc.confirm_transaction(self.SIG, 100)

    def test_lookup_failure_is_ambiguous(self, rpc, session):
        session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(AmbiguousConfirmation):
            rpc.confirm_transaction(self.SIG, 100)
