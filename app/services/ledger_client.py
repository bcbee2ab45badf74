"""
Ledger network client.

The settlement engine only talks to the ledger through ``LedgerClient``. The
production implementation, ``RpcLedger``, speaks Solana JSON-RPC over HTTP.

Failure classification for ``sendTransaction``:
- SettlementFailed only when nothing can have been applied: the node answered
  with a JSON-RPC error object (preflight rejection), or no connection to the
  node was ever established
- everything else is AmbiguousConfirmation: read timeouts, dropped
  connections, gateway errors and unparseable answers all happen after the
  request body may have reached the node

During confirmation a failed status lookup, or an expired blockhash with no
status seen, is also AmbiguousConfirmation.
"""

# pyright: reportAttributeAccessIssue=false

import base64
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import requests
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from urllib3.exceptions import NewConnectionError

from app.core.config import settings
from app.core.errors import AmbiguousConfirmation, LedgerError, SettlementFailed

logger = logging.getLogger(__name__)

CONFIRMED_STATUSES = ("confirmed", "finalized")
DEFAULT_HISTORY_LIMIT = 50


class RpcErrorResponse(LedgerError):
    """The node answered with a JSON-RPC error object."""

    code = "rpc_error"


def _never_sent(cause: Optional[BaseException]) -> bool:
    """True when the request failed before a connection to the node existed."""
    if isinstance(cause, requests.ConnectTimeout):
        return True
    if isinstance(cause, requests.ConnectionError) and not isinstance(cause, requests.Timeout):
        reason = cause.args[0] if cause.args else None
        # requests wraps urllib3 MaxRetryError(reason=NewConnectionError)
        reason = getattr(reason, "reason", reason)
        return isinstance(reason, NewConnectionError)
    return False


@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    slot: int
    err: Optional[Any] = None


class LedgerClient(ABC):
    """Operations the settlement engine needs from the ledger network."""

    @abstractmethod
    def latest_blockhash(self) -> Tuple[Hash, int]:
        """Return (recent blockhash, last valid block height)."""

    @abstractmethod
    def minimum_balance_for_rent_exemption(self, size: int) -> int:
        """Lamports an account of *size* bytes needs to be rent exempt."""

    @abstractmethod
    def send_transaction(self, transaction: Transaction) -> Signature:
        """Submit a signed transaction."""

    @abstractmethod
    def confirm_transaction(self, signature: Signature, last_valid_block_height: int) -> None:
        """Block until *signature* is confirmed; raise on failure."""

    @abstractmethod
    def get_token_account_data(self, owner: Pubkey, mint: Pubkey) -> Optional[bytes]:
        """Raw bytes of *owner*'s token account for *mint*, None when absent."""

    @abstractmethod
    def get_balance(self, owner: Pubkey) -> int:
        """Native balance in lamports."""

    @abstractmethod
    def get_signatures_for_address(
        self, address: Pubkey, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[TransactionRecord]:
        """Recent transactions touching *address*, most recent first."""


def sort_history(records: List[TransactionRecord], limit: int = DEFAULT_HISTORY_LIMIT) -> List[TransactionRecord]:
    return sorted(records, key=lambda r: r.slot, reverse=True)[:limit]


class RpcLedger(LedgerClient):
    """Solana JSON-RPC implementation of ``LedgerClient``."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or settings.rpc_url
        self.timeout = timeout if timeout is not None else settings.RPC_TIMEOUT_SECONDS
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.CONFIRM_POLL_SECONDS
        )
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise LedgerError(f"{method} request failed: {exc}") from exc
        if response.status_code != 200:
            raise LedgerError(f"{method} failed: {response.status_code} {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise LedgerError(f"{method} returned invalid JSON") from exc
        if data.get("error"):
            error = data["error"]
            raise RpcErrorResponse(f"{method} error {error.get('code')}: {error.get('message')}")
        return data.get("result")

    def latest_blockhash(self) -> Tuple[Hash, int]:
        result = self._call("getLatestBlockhash", [{"commitment": "confirmed"}])
        value = result["value"]
        return Hash.from_string(value["blockhash"]), int(value["lastValidBlockHeight"])

    def minimum_balance_for_rent_exemption(self, size: int) -> int:
        return int(self._call("getMinimumBalanceForRentExemption", [size]))

    def send_transaction(self, transaction: Transaction) -> Signature:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        params = [encoded, {"encoding": "base64", "preflightCommitment": "confirmed"}]
        try:
            result = self._call("sendTransaction", params)
        except RpcErrorResponse as exc:
            raise SettlementFailed(f"transaction rejected: {exc}") from exc
        except LedgerError as exc:
            if _never_sent(exc.__cause__):
                raise SettlementFailed(f"ledger unreachable: {exc}") from exc
            raise AmbiguousConfirmation(
                f"sendTransaction outcome unknown: {exc}",
                signature=str(transaction.signatures[0]),
            ) from exc
        return Signature.from_string(result)

    def _block_height(self) -> int:
        return int(self._call("getBlockHeight", [{"commitment": "confirmed"}]))

    def confirm_transaction(self, signature: Signature, last_valid_block_height: int) -> None:
        sig = str(signature)
        while True:
            try:
                result = self._call("getSignatureStatuses", [[sig], {"searchTransactionHistory": False}])
                status = (result or {}).get("value", [None])[0]
                if status is not None:
                    if status.get("err"):
                        raise SettlementFailed(f"transaction {sig} failed: {status['err']}")
                    if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                        return
                elif self._block_height() > last_valid_block_height:
                    raise AmbiguousConfirmation(
                        f"blockhash expired before {sig} was seen", signature=sig
                    )
            except LedgerError as exc:
                raise AmbiguousConfirmation(
                    f"confirmation of {sig} interrupted: {exc}", signature=sig
                ) from exc
            time.sleep(self.poll_interval)

    def get_token_account_data(self, owner: Pubkey, mint: Pubkey) -> Optional[bytes]:
        result = self._call(
            "getTokenAccountsByOwner",
            [str(owner), {"mint": str(mint)}, {"encoding": "base64", "commitment": "confirmed"}],
        )
        accounts = (result or {}).get("value", [])
        if len(accounts) == 0:
            return None
        data = accounts[0]["account"]["data"]
        encoded = data[0] if isinstance(data, list) else data
        return base64.b64decode(encoded)

    def get_balance(self, owner: Pubkey) -> int:
        result = self._call("getBalance", [str(owner), {"commitment": "confirmed"}])
        return int(result["value"])

    def get_signatures_for_address(
        self, address: Pubkey, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> List[TransactionRecord]:
        result = self._call("getSignaturesForAddress", [str(address), {"limit": limit}])
        records = [
            TransactionRecord(signature=item["signature"], slot=int(item["slot"]), err=item.get("err"))
            for item in result or []
        ]
        return sort_history(records, limit)
