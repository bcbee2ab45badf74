from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.dependencies import (
    get_issuer,
    get_nonce_store,
    get_settlement_engine,
    http_error,
)
from app.core.entropy import create_nonce
from app.core.errors import LoyaltyError
from app.core.qr_payload import decode_proof
from app.db.session import get_db
from app.schemas.auth import NonceResponse
from app.schemas.passes import (
    PassIssuanceRequest,
    PassIssuanceResponse,
    RedeemRequest,
    RedeemResponse,
)
from app.services.issuer_wallet import IssuerWallet
from app.services.nonce_store import NonceStore
from app.services.pass_issuance import issue_pass
from app.services.redemption import redeem_pass
from app.services.settlement import SettlementEngine

router = APIRouter()
group_tags: List[str] = ["passes"]


@router.post(
    "/nonce",
    tags=group_tags,
    response_model=NonceResponse,
    status_code=status.HTTP_201_CREATED,
)
def request_nonce() -> NonceResponse:
    """Generate a fresh 96-bit nonce for a sign-in challenge."""
    try:
        return NonceResponse(nonce=create_nonce())
    except LoyaltyError as e:
        raise http_error(e)


@router.post(
    "",
    tags=group_tags,
    response_model=PassIssuanceResponse,
    status_code=status.HTTP_200_OK,
)
def create_pass(
    payload: PassIssuanceRequest,
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> PassIssuanceResponse:
    """
    Verify a wallet sign-in and return the pass contents.

    Payload:
    - asset: mint address of the loyalty asset (optional)
    - challenge: the sign-in input the wallet signed (camelCase keys)
    - proof: address, publicKey, signedMessage and signature (base64)
    - nonce: the nonce returned by `POST /passes/nonce`

    Returns:
    - address, balance (display text and raw units)
    - message: QR frame `<payload>:<replay nonce>` to print on the pass
    """
    try:
        proof = decode_proof(
            payload.proof.address,
            public_key=payload.proof.public_key,
            signed_message=payload.proof.signed_message,
            signature=payload.proof.signature,
        )
        issuance = issue_pass(
            db,
            engine,
            payload.challenge,
            proof,
            payload.nonce,
            asset_mint=payload.asset,
        )
    except LoyaltyError as e:
        raise http_error(e)
    return PassIssuanceResponse(
        address=issuance.address,
        balance=issuance.balance.display(),
        raw_balance=issuance.balance.raw,
        decimals=issuance.balance.decimals,
        message=issuance.message,
    )


@router.post(
    "/redeem",
    tags=group_tags,
    response_model=RedeemResponse,
    status_code=status.HTTP_200_OK,
)
def redeem(
    payload: RedeemRequest,
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
    issuer: IssuerWallet = Depends(get_issuer),
    nonce_store: NonceStore = Depends(get_nonce_store),
) -> RedeemResponse:
    """
    Redeem points from a scanned pass.

    The points move from the holder to the issuer under the issuer's permanent
    delegate authority. A QR frame can be redeemed once.

    *Sample request body:*
    {
        "amount": "50",
        "qrCode": "{\\"input\\":{...},\\"signature\\":\\"...\\"}:Xq3v9LkA0bT2mQw7Z"
    }

    Errors:
    - 400 malformed_payload / invalid_proof / invalid_amount
    - 409 replay_detected, or ambiguous_confirmation (check the ledger before retrying)
    - 502 settlement_failed (nothing moved, safe to retry)
    """
    try:
        receipt = redeem_pass(
            db,
            engine,
            issuer.keypair,
            payload.amount,
            payload.qr_code,
            nonce_store=nonce_store,
        )
    except LoyaltyError as e:
        raise http_error(e)
    return RedeemResponse(
        signature=receipt.signature,
        address=receipt.address,
        amount=receipt.amount.display(),
    )
