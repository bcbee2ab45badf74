from dataclasses import dataclass
import logging
from typing import Optional

from solders.pubkey import Pubkey
from sqlalchemy.orm import Session

from app.core.amounts import AssetAmount
from app.core.config import settings
from app.core.errors import AssetNotConfigured, InvalidProof, MissingAddress
from app.core.qr_payload import encode_frame
from app.core.solana_auth import SignInProof, verify_sign_in
from app.schemas.auth import SignInChallenge
from app.services.asset_registry import get_loyalty_asset
from app.services.settlement import SettlementEngine

logger = logging.getLogger(__name__)


@dataclass
class PassIssuance:
    address: str
    balance: AssetAmount
    message: str  # QR frame to embed in the pass


def issue_pass(
    db: Session,
    engine: SettlementEngine,
    challenge: SignInChallenge,
    proof: SignInProof,
    nonce: str,
    asset_mint: Optional[str] = None,
    replay_nonce: Optional[str] = None,
) -> PassIssuance:
    """
    Verify a holder's sign-in and produce the pass contents.

    The proof is re-verified here; only a verified challenge and proof are ever
    packed into a QR frame. The returned frame carries a fresh replay nonce.
    """
    if not challenge.address:
        raise MissingAddress("No address provided")
    if not nonce or challenge.nonce != nonce:
        raise InvalidProof("sign-in nonce does not match the request")
    if not verify_sign_in(challenge, proof, domain=settings.SIGN_IN_DOMAIN):
        logger.warning("rejected sign-in proof for %s", challenge.address[:8])
        raise InvalidProof("Invalid sign in data")

    asset = get_loyalty_asset(db)
    if asset_mint and asset_mint != str(asset.mint):
        raise AssetNotConfigured(f"asset {asset_mint} is not the configured loyalty asset")

    raw = engine.read_balance(Pubkey.from_string(challenge.address), asset)
    message = encode_frame(challenge, proof, replay_nonce)
    return PassIssuance(
        address=challenge.address,
        balance=asset.amount(raw),
        message=message,
    )
