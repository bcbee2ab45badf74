from pydantic import BaseModel, Field

from app.schemas.my_base_model import CustomBaseModel
from app.schemas.passes import AmountText


class TokenInfo(CustomBaseModel):
    """Loyalty asset identity for `/token`."""

    mint: str = ""
    program_id: str = ""
    name: str = ""
    symbol: str = ""
    decimals: int = 0
    issuer: str = ""


class MintRequest(BaseModel):
    """Request body for `POST /token/mint`.

    *Sample request body:*
    {
        "destination": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
        "amount": "100"
    }
    """

    destination: str = Field(..., description="Wallet address to credit")
    amount: AmountText = Field(..., description="Amount of points, decimal text")


class MintResponse(CustomBaseModel):
    signature: str = ""
    destination: str = ""
    amount: str = "0"
