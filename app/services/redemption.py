import logging
from dataclasses import dataclass
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from sqlalchemy.orm import Session

from app.core.amounts import AssetAmount, to_raw_units
from app.core.config import settings
from app.core.errors import AmbiguousConfirmation, InvalidAmount, InvalidProof, SettlementFailed
from app.core.qr_payload import decode_frame
from app.core.solana_auth import verify_sign_in
from app.services.asset_registry import get_loyalty_asset
from app.services.nonce_store import NonceStore, SqlNonceStore
from app.services.settlement import SettlementEngine
from app.services.token_program import U64_MAX

logger = logging.getLogger(__name__)


@dataclass
class RedemptionReceipt:
    signature: str
    address: str
    amount: AssetAmount
    replay_nonce: str


def redeem_pass(
    db: Session,
    engine: SettlementEngine,
    issuer: Keypair,
    amount: str,
    qr_code: str,
    nonce_store: Optional[NonceStore] = None,
) -> RedemptionReceipt:
    """
    Redeem *amount* loyalty points from the holder identified by a scanned pass.

    Order matters:
    1. decode and verify the frame (format/proof errors are final)
    2. resolve the asset and convert the amount (1..u64 max raw units)
    3. consume the replay nonce (atomic, at most one concurrent winner)
    4. move the points holder -> issuer under the permanent delegate

    If the ledger definitively rejects the transfer the nonce is released so the
    same pass can be presented again. If the outcome is ambiguous the nonce stays
    consumed; the transfer must be reconciled before anything is retried.
    """
    frame = decode_frame(qr_code)
    if not verify_sign_in(frame.challenge, frame.proof, domain=settings.SIGN_IN_DOMAIN):
        logger.warning("rejected redemption proof for %s", frame.proof.account.address[:8])
        raise InvalidProof("Invalid sign in data")

    asset = get_loyalty_asset(db)
    raw_amount = to_raw_units(amount, asset.decimals)
    if raw_amount <= 0:
        raise InvalidAmount("amount must be greater than zero")
    if raw_amount > U64_MAX:
        raise InvalidAmount("amount is too large")

    holder = Pubkey.from_string(frame.proof.account.address)
    store = nonce_store or SqlNonceStore(db)
    store.reserve(frame.replay_nonce, frame.proof_digest)

    try:
        signature = engine.transfer_as_delegate(issuer, holder, asset.issuer, raw_amount, asset)
    except SettlementFailed:
        store.release(frame.replay_nonce)
        raise
    except AmbiguousConfirmation as exc:
        store.mark_ambiguous(frame.replay_nonce, exc.signature)
        logger.error("redemption %s needs reconciliation: %s", frame.replay_nonce, exc)
        raise
    except Exception:
        # failed before anything reached the ledger
        store.release(frame.replay_nonce)
        raise

    store.mark_settled(frame.replay_nonce, signature)
    logger.info("redeemed %d from %s (tx %s)", raw_amount, str(holder)[:8], signature)
    return RedemptionReceipt(
        signature=signature,
        address=str(holder),
        amount=asset.amount(raw_amount),
        replay_nonce=frame.replay_nonce,
    )
