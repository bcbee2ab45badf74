from typing import Any, List, Optional

from pydantic import Field

from app.schemas.my_base_model import CustomBaseModel


class TransactionItem(CustomBaseModel):
    signature: str = ""
    slot: int = 0
    err: Optional[Any] = None  # ledger error object, None when the transaction succeeded


class WalletSnapshot(CustomBaseModel):
    """Response model for `GET /wallet/{address}`"""

    address: str = ""
    native_balance: str = "0"  # SOL, display text
    native_raw: int = 0  # lamports
    asset_balance: str = "0"
    asset_raw: int = 0
    transactions: List[TransactionItem] = Field(default_factory=list)
