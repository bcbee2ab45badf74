"""
FastAPI Dependencies
This module provides dependency functions injected into route handlers, and the
translation of core errors into HTTP errors.
Usage in endpoints:
    @router.post("/passes/redeem")
    def redeem(
        engine: SettlementEngine = Depends(get_settlement_engine),
        issuer: IssuerWallet = Depends(get_issuer),
    ):
        ...
Tests swap the ledger by overriding ``get_settlement_engine`` in
``app.dependency_overrides``.
"""

from fastapi import Depends, HTTPException, status
from solders.pubkey import Pubkey
from sqlalchemy.orm import Session

from app.core.errors import IssuerWalletError, LoyaltyError
from app.db.session import get_db
from app.services.issuer_wallet import IssuerWallet, get_issuer_wallet
from app.services.ledger_client import RpcLedger
from app.services.nonce_store import NonceStore, SqlNonceStore
from app.services.settlement import SettlementEngine


def http_error(error: LoyaltyError) -> HTTPException:
    """Map a core error to the HTTP error returned to clients."""
    return HTTPException(
        status_code=error.status_code,
        detail={"error": error.code, "message": error.message},
    )


def parse_address(address: str) -> Pubkey:
    """
    Parse a base58 wallet address from a request.
    Raises:
        HTTPException 400: the address is not a valid public key
    """
    try:
        return Pubkey.from_string(address.strip())
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_address", "message": "Invalid wallet address"},
        )


def get_settlement_engine() -> SettlementEngine:
    return SettlementEngine(RpcLedger())


def get_issuer() -> IssuerWallet:
    try:
        return get_issuer_wallet()
    except IssuerWalletError as e:
        raise http_error(e)


def get_nonce_store(db: Session = Depends(get_db)) -> NonceStore:
    return SqlNonceStore(db)
