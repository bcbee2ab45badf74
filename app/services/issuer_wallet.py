from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from app.core.config import settings
from app.core.errors import IssuerWalletError


@dataclass(frozen=True)
class IssuerWallet:
    keypair: Keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()


_cached: Dict[Tuple[str, Path], IssuerWallet] = {}


def _secret_key_bytes(value: Any) -> bytes:
    """Accept a hex string or the 64-int list written by solana-keygen."""
    if isinstance(value, str):
        try:
            return bytes.fromhex(value.strip())
        except ValueError as exc:
            raise IssuerWalletError("issuer secret_key is not valid hex") from exc
    if isinstance(value, list) and all(isinstance(v, int) for v in value):
        try:
            return bytes(value)
        except ValueError as exc:
            raise IssuerWalletError("issuer secret_key has values outside 0..255") from exc
    raise IssuerWalletError("issuer secret_key must be hex text or a list of ints")


def load_issuer_wallet(path: Path, network: str) -> IssuerWallet:
    if not path.exists():
        raise IssuerWalletError(f"issuer wallet file not found: {path}")
    try:
        with open(path, "r") as file:
            data = yaml.safe_load(file) or {}
    except yaml.YAMLError as exc:
        raise IssuerWalletError(f"failed to parse issuer wallet file: {exc}") from exc

    entry = data.get(network) if isinstance(data, dict) else None
    if not isinstance(entry, dict):
        raise IssuerWalletError(f"no wallet data for network '{network}'")

    secret = _secret_key_bytes(entry.get("secret_key"))
    if len(secret) != 64:
        raise IssuerWalletError("issuer secret_key must be 64 bytes")
    try:
        keypair = Keypair.from_bytes(secret)
    except Exception as exc:
        raise IssuerWalletError(f"invalid issuer keypair: {exc}") from exc
    return IssuerWallet(keypair=keypair)


def get_issuer_wallet(path: Optional[str] = None) -> IssuerWallet:
    network = settings.network
    wallet_path = Path(path or settings.ISSUER_WALLET_PATH)
    key = (network, wallet_path)
    if key not in _cached:
        _cached[key] = load_issuer_wallet(wallet_path, network)
    return _cached[key]
