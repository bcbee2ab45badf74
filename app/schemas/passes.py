from typing import Annotated, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from app.schemas.auth import ProofInput, SignInChallenge
from app.schemas.my_base_model import CustomBaseModel


def _amount_text(value):
    # JSON numbers are accepted and converted to text before parsing
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


AmountText = Annotated[str, BeforeValidator(_amount_text)]


class PassIssuanceRequest(BaseModel):
    """Request body for `POST /passes`."""

    asset: Optional[str] = Field(None, description="Mint address of the loyalty asset (optional)")
    challenge: SignInChallenge
    proof: ProofInput
    nonce: str = Field(..., description="Nonce handed out by `POST /passes/nonce`")


class PassIssuanceResponse(CustomBaseModel):
    """Pass contents: holder, balance and the QR frame to embed."""

    address: str = ""
    balance: str = "0"  # display text
    raw_balance: int = 0
    decimals: int = 0
    message: str = ""  # <json payload>:<replay nonce>


class RedeemRequest(BaseModel):
    """Request body for `POST /passes/redeem`."""

    model_config = ConfigDict(populate_by_name=True)

    amount: AmountText = Field(..., description="Amount of points to redeem, decimal text")
    qr_code: str = Field(..., alias="qrCode", description="Scanned QR frame")


class RedeemResponse(CustomBaseModel):
    """Response for a settled redemption."""

    status: Literal["ok"] = "ok"
    signature: str = ""
    address: str = ""
    amount: str = "0"
