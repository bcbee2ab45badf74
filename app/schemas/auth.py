from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SignInChallenge(BaseModel):
    """Sign-in challenge (Sign-In-With-Solana input).

    Field names travel camelCase on the wire (``chainId``, ``issuedAt`` ...).
    Instances are immutable: use ``model_copy(update=...)`` to derive a variant.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    domain: Optional[str] = Field(None, description="Origin the holder believes they sign for")
    address: Optional[str] = Field(None, description="Wallet address (base58 public key)")
    statement: Optional[str] = None
    uri: Optional[str] = None
    version: Optional[str] = None
    chain_id: Optional[str] = Field(None, alias="chainId")
    nonce: Optional[str] = None
    issued_at: Optional[str] = Field(None, alias="issuedAt")
    expiration_time: Optional[str] = Field(None, alias="expirationTime")
    not_before: Optional[str] = Field(None, alias="notBefore")
    request_id: Optional[str] = Field(None, alias="requestId")
    resources: Optional[List[str]] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class NonceResponse(BaseModel):
    """Response model for nonce generation - output"""

    nonce: str = ""


class ProofInput(BaseModel):
    """Sign-in output as sent by a client; byte fields are base64 text."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., description="Wallet address")
    public_key: str = Field(..., alias="publicKey", description="Ed25519 public key (base64)")
    signed_message: str = Field(..., alias="signedMessage", description="Signed bytes (base64)")
    signature: str = Field(..., description="Ed25519 signature (base64)")
