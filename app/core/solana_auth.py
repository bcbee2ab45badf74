"""
Solana Wallet Sign-In Utilities

This module handles the challenge-response flow used to prove wallet ownership.
It follows Sign-In-With-Solana: a challenge is rendered to a canonical text, the
holder's wallet signs those exact bytes, and the server re-derives the text and
checks the signature.

Authentication Flow:
1. Backend generates a random nonce -> create_nonce() (app.core.entropy)
2. Wallet builds the challenge and signs its canonical text -> sign_in()
3. Client sends: challenge, address, public key, signed message, signature
4. Backend verifies -> verify_sign_in()
   - Re-derives the canonical text and compares it byte-for-byte with the signed bytes
   - Verifies the public key is the one the address encodes
   - Verifies the ED25519 signature

The canonical text is the signed artefact, so signer and verifier must render it
identically. Empty strings and empty resource lists are treated as absent fields.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from app.core.config import settings
from app.core.errors import MissingAddress
from app.schemas.auth import SignInChallenge

logger = logging.getLogger(__name__)

HEADER_SUFFIX = " wants you to sign in with your Solana account:"

# (label, attribute) in canonical order; resources are rendered separately
_FIELD_LINES = (
    ("URI", "uri"),
    ("Version", "version"),
    ("Chain ID", "chain_id"),
    ("Nonce", "nonce"),
    ("Issued At", "issued_at"),
    ("Expiration Time", "expiration_time"),
    ("Not Before", "not_before"),
    ("Request ID", "request_id"),
)
_LABELS = {label: attr for label, attr in _FIELD_LINES}


@dataclass(frozen=True)
class SignInAccount:
    address: str
    public_key: bytes
    chains: List[str] = field(default_factory=list)
    features: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SignInProof:
    """Holder's answer to a challenge: the signed bytes and their signature."""

    account: SignInAccount
    signed_message: bytes
    signature: bytes


def _iso_now() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def create_sign_in_challenge(
    address: str,
    nonce: str,
    domain: Optional[str] = None,
    issued_at: Optional[str] = None,
) -> SignInChallenge:
    """Build the standard challenge for *address* bound to *domain* and *nonce*."""
    return SignInChallenge(
        domain=domain or settings.SIGN_IN_DOMAIN,
        address=address,
        statement=settings.SIGN_IN_STATEMENT,
        version="1",
        chain_id=settings.SIGN_IN_CHAIN_ID,
        nonce=nonce,
        issued_at=issued_at or _iso_now(),
    )


def create_sign_in_message_text(challenge: SignInChallenge) -> str:
    """
    Render *challenge* to its canonical text.

    Raises:
        MissingAddress: the challenge has no address
        ValueError: the challenge has no domain
    """
    if not challenge.address:
        raise MissingAddress("sign-in challenge has no address")
    if not challenge.domain:
        raise ValueError("sign-in challenge has no domain")

    message = f"{challenge.domain}{HEADER_SUFFIX}\n{challenge.address}"
    if challenge.statement:
        message += f"\n\n{challenge.statement}"

    fields: List[str] = []
    for label, attr in _FIELD_LINES:
        value = getattr(challenge, attr)
        if value:
            fields.append(f"{label}: {value}")
    if challenge.resources:
        fields.append("Resources:")
        fields.extend(f"- {resource}" for resource in challenge.resources)
    if fields:
        message += "\n\n" + "\n".join(fields)
    return message


def create_sign_in_message(challenge: SignInChallenge) -> bytes:
    return create_sign_in_message_text(challenge).encode("utf-8")


def parse_sign_in_message(text: str) -> Optional[SignInChallenge]:
    """Recover the challenge from canonical text; None if *text* is not canonical."""
    blocks = text.split("\n\n")
    head = blocks[0].split("\n")
    if len(head) != 2 or not head[0].endswith(HEADER_SUFFIX):
        return None
    domain = head[0][: -len(HEADER_SUFFIX)]
    data: dict = {"domain": domain, "address": head[1]}

    rest = blocks[1:]
    if rest and not re.match(r"^[A-Za-z ]+:( |$)", rest[0]):
        data["statement"] = rest[0]
        rest = rest[1:]
    if len(rest) > 1:
        return None

    if rest:
        lines = rest[0].split("\n")
        i = 0
        while i < len(lines):
            line = lines[i]
            if line == "Resources:":
                resources = [item[2:] for item in lines[i + 1:] if item.startswith("- ")]
                if len(resources) != len(lines) - i - 1:
                    return None
                data["resources"] = resources
                break
            label, sep, value = line.partition(": ")
            attr = _LABELS.get(label)
            if not sep or attr is None or attr in data:
                return None
            data[attr] = value
            i += 1

    challenge = SignInChallenge(**data)
    # the parse is only accepted when it renders back to the same text
    if create_sign_in_message_text(challenge) != text:
        return None
    return challenge


def sign_in(keypair: Keypair, challenge: SignInChallenge) -> SignInProof:
    """Wallet side: sign the canonical text of *challenge* with *keypair*."""
    address = challenge.address or str(keypair.pubkey())
    if not challenge.address:
        challenge = challenge.model_copy(update={"address": address})
    signed_message = create_sign_in_message(challenge)
    signature = keypair.sign_message(signed_message)
    return SignInProof(
        account=SignInAccount(address=address, public_key=bytes(keypair.pubkey())),
        signed_message=signed_message,
        signature=bytes(signature),
    )


def _public_key_matches_address(address: str, public_key_bytes: bytes) -> bool:
    """
    Helper: Verify that the public key is the key the address encodes.

    A Solana address is the base58 form of the 32-byte ED25519 public key.
    """
    try:
        return Pubkey.from_string(address) == Pubkey.from_bytes(public_key_bytes)
    except Exception:
        return False


def verify_sign_in(
    challenge: SignInChallenge,
    proof: SignInProof,
    domain: Optional[str] = None,
) -> bool:
    """
    Verify a sign-in proof against the challenge it claims to answer.

    Never raises: any mismatch or malformed input yields False. When *domain*
    is given the challenge must have been issued for exactly that domain.

    Steps:
    1. Re-derive the canonical text (the proof's address fills a missing one)
    2. Compare it byte-for-byte with the signed bytes; mismatch stops here,
       before any signature work
    3. Check the public key belongs to the address
    4. Verify the ED25519 signature over the signed bytes
    """
    if domain is not None and challenge.domain != domain:
        return False
    address = proof.account.address
    if challenge.address and challenge.address != address:
        return False
    try:
        derived = create_sign_in_message(challenge.model_copy(update={"address": address}))
    except (MissingAddress, ValueError):
        return False

    if derived != proof.signed_message:
        return False

    if not _public_key_matches_address(address, proof.account.public_key):
        return False

    try:
        Ed25519PublicKey.from_public_bytes(proof.account.public_key).verify(
            proof.signature, proof.signed_message
        )
    except (InvalidSignature, ValueError):
        return False
    return True
