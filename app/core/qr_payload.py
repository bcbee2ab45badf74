"""
QR payload codec.

A verified challenge and its proof are packed into a JSON record with the three
byte arrays base64-encoded, then a replay nonce is appended after a colon:

    <json CompressedPayload>:<replay nonce>

The JSON body may itself contain colons (timestamps, URIs), so frames are always
split on the LAST colon.
"""

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import ValidationError

from app.core.config import settings
from app.core.entropy import create_nonce
from app.core.errors import MalformedPayload
from app.core.solana_auth import SignInAccount, SignInProof
from app.schemas.auth import SignInChallenge

FRAME_SEPARATOR = ":"


@dataclass(frozen=True)
class DecodedFrame:
    challenge: SignInChallenge
    proof: SignInProof
    replay_nonce: str

    @property
    def proof_digest(self) -> str:
        return proof_digest(self.proof)


def proof_digest(proof: SignInProof) -> str:
    """Stable identifier of a proof, independent of the frame wrapping it."""
    return hashlib.sha256(proof.signature).hexdigest()


def _encode_base64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode_base64(value, name: str) -> bytes:
    """Helper: Decode base64 string to bytes."""
    if not isinstance(value, str):
        raise MalformedPayload(f"{name} must be base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPayload(f"{name} is not valid base64") from exc


def decode_proof(address: str, public_key, signed_message, signature) -> SignInProof:
    """Build a proof from base64 fields as they travel in frames and request bodies."""
    return SignInProof(
        account=SignInAccount(
            address=address,
            public_key=_decode_base64(public_key, "publicKey"),
            chains=[],
            features=[],
        ),
        signature=_decode_base64(signature, "signature"),
        signed_message=_decode_base64(signed_message, "signedMessage"),
    )


def compress_output(challenge: SignInChallenge, proof: SignInProof) -> dict:
    """JSON-serialisable record of a challenge and its proof."""
    return {
        "input": challenge.to_wire(),
        "signature": _encode_base64(proof.signature),
        "signedMessage": _encode_base64(proof.signed_message),
        "publicKey": _encode_base64(proof.account.public_key),
    }


def decompress_output(compressed: str) -> Tuple[SignInChallenge, SignInProof]:
    """
    Rebuild challenge and proof from the JSON body of a frame.

    Chains and features are not carried over the wire and come back empty.

    Raises:
        MalformedPayload: bad JSON, missing address, or bad base64
    """
    try:
        record = json.loads(compressed)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedPayload("payload is not valid JSON") from exc
    if not isinstance(record, dict) or not isinstance(record.get("input"), dict):
        raise MalformedPayload("payload has no sign-in input")

    try:
        challenge = SignInChallenge.model_validate(record["input"])
    except ValidationError as exc:
        raise MalformedPayload("sign-in input is malformed") from exc
    if not challenge.address:
        raise MalformedPayload("Missing address")

    proof = decode_proof(
        challenge.address,
        public_key=record.get("publicKey"),
        signed_message=record.get("signedMessage"),
        signature=record.get("signature"),
    )
    return challenge, proof


def encode_frame(
    challenge: SignInChallenge,
    proof: SignInProof,
    replay_nonce: Optional[str] = None,
) -> str:
    """Build the QR frame string; a fresh 96-bit replay nonce is drawn if none is given."""
    if replay_nonce is None:
        replay_nonce = create_nonce(settings.REPLAY_NONCE_ENTROPY_BITS)
    if not replay_nonce or FRAME_SEPARATOR in replay_nonce:
        raise ValueError("replay nonce must be non-empty and contain no colon")
    body = json.dumps(compress_output(challenge, proof), separators=(",", ":"))
    return f"{body}{FRAME_SEPARATOR}{replay_nonce}"


def split_frame(frame: str) -> Tuple[str, str]:
    """Split a frame on its last colon into (json body, replay nonce)."""
    if not isinstance(frame, str):
        raise MalformedPayload("QR frame must be text")
    body, sep, replay_nonce = frame.rpartition(FRAME_SEPARATOR)
    if not sep or not body or not replay_nonce:
        raise MalformedPayload("QR frame must be '<payload>:<nonce>'")
    return body, replay_nonce


def decode_frame(frame: str) -> DecodedFrame:
    body, replay_nonce = split_frame(frame)
    challenge, proof = decompress_output(body)
    return DecodedFrame(challenge=challenge, proof=proof, replay_nonce=replay_nonce)
