from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.amounts import format_native
from app.core.dependencies import get_settlement_engine, http_error, parse_address
from app.core.errors import LoyaltyError
from app.db.session import get_db
from app.schemas.wallet import TransactionItem, WalletSnapshot
from app.services.asset_registry import find_loyalty_asset
from app.services.settlement import SettlementEngine

router = APIRouter()
group_tags: List[str] = ["wallet"]


@router.get(
    "/{address}",
    tags=group_tags,
    response_model=WalletSnapshot,
    status_code=status.HTTP_200_OK,
)
def get_wallet(
    address: str,
    db: Session = Depends(get_db),
    engine: SettlementEngine = Depends(get_settlement_engine),
) -> WalletSnapshot:
    """
    Get a fresh snapshot of a wallet.

    Path Parameters:
    - address: base58 wallet address

    Returns:
    - native_balance: SOL balance (display text), native_raw in lamports
    - asset_balance: loyalty points (0 until the asset exists), asset_raw
    - transactions: recent transactions, most recent first (max 50)
    """
    owner = parse_address(address)
    try:
        snapshot = engine.refresh(owner, find_loyalty_asset(db))
    except LoyaltyError as e:
        raise http_error(e)
    balances = snapshot.balances
    return WalletSnapshot(
        address=str(owner),
        native_balance=format_native(balances.native),
        native_raw=balances.native,
        asset_balance=balances.asset.display(),
        asset_raw=balances.asset.raw,
        transactions=[
            TransactionItem(signature=record.signature, slot=record.slot, err=record.err)
            for record in snapshot.history
        ],
    )
