import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.amounts import to_raw_units
from app.core.dependencies import (
    get_issuer,
    get_settlement_engine,
    http_error,
    parse_address,
)
from app.core.errors import InvalidAmount, LoyaltyError
from app.db.session import get_db
from app.schemas.token import MintRequest, MintResponse, TokenInfo
from app.services.asset_registry import (
    find_loyalty_asset,
    get_loyalty_asset,
    save_loyalty_asset,
)
from app.services.issuer_wallet import IssuerWallet
from app.services.settlement import LoyaltyAsset, SettlementEngine
from app.services.token_program import U64_MAX

logger = logging.getLogger(__name__)

router = APIRouter()
group_tags: List[str] = ["token"]


def _token_info(asset: LoyaltyAsset) -> TokenInfo:
    return TokenInfo.from_record(
        {
            "mint": str(asset.mint),
            "program_id": str(asset.program_id),
            "name": asset.name,
            "symbol": asset.symbol,
            "decimals": asset.decimals,
            "issuer": str(asset.issuer),
        }
    )


@router.get(
    "",
    tags=group_tags,
    response_model=TokenInfo,
    status_code=status.HTTP_200_OK,
)
def get_token(db: Session = Depends(get_db)) -> TokenInfo:
    """Get the loyalty asset identity (404 until it has been created)."""
    asset = find_loyalty_asset(db)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Token not found")
    return _token_info(asset)


@router.post(
    "",
    tags=group_tags,
    response_model=TokenInfo,
    status_code=status.HTTP_201_CREATED,
)
def create_token(
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
    issuer: IssuerWallet = Depends(get_issuer),
) -> TokenInfo:
    """
    Create the loyalty asset with the issuer as mint authority and permanent
    delegate. Only one asset exists; if it was already created it is returned
    unchanged.
    """
    existing = find_loyalty_asset(db)
    if existing is not None:
        return _token_info(existing)
    try:
        asset = engine.create_asset(issuer.keypair)
    except LoyaltyError as e:
        raise http_error(e)
    save_loyalty_asset(db, asset)
    logger.info("loyalty asset %s saved", asset.mint)
    return _token_info(asset)


@router.post(
    "/mint",
    tags=group_tags,
    response_model=MintResponse,
    status_code=status.HTTP_200_OK,
)
def mint_points(
    payload: MintRequest,
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
    issuer: IssuerWallet = Depends(get_issuer),
) -> MintResponse:
    """
    Credit points to a wallet. The wallet's token account is created if absent.

    *Sample request body:*
    {
        "destination": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
        "amount": "100"
    }
    """
    destination = parse_address(payload.destination)
    try:
        asset = get_loyalty_asset(db)
        raw = to_raw_units(payload.amount, asset.decimals)
        if raw <= 0:
            raise InvalidAmount("amount must be greater than zero")
        if raw > U64_MAX:
            raise InvalidAmount("amount is too large")
        signature = engine.mint(issuer.keypair, destination, raw, asset)
    except LoyaltyError as e:
        raise http_error(e)
    return MintResponse(
        signature=signature,
        destination=str(destination),
        amount=asset.amount(raw).display(),
    )
