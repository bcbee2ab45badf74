"""
Error taxonomy for the proof-of-possession and settlement core.

Every error carries a stable ``code`` (returned to HTTP clients as the rejection
reason) and the ``status_code`` the API layer answers with. Messages never embed
decoded signature, message or public-key bytes.

Propagation:
- format and proof failures (MalformedPayload, MissingAddress, InvalidProof) are
  final; a retry with the same payload can never succeed.
- SettlementFailed means nothing was applied on the ledger; the caller may retry.
- AmbiguousConfirmation means the transaction may or may not have landed; callers
  must reconcile out-of-band instead of resubmitting.
"""


class LoyaltyError(Exception):
    """Base class for all errors raised by the loyalty core."""

    code = "loyalty_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code.replace("_", " "))

    @property
    def message(self) -> str:
        return str(self)


class EntropyUnavailable(LoyaltyError):
    """No secure random generator is reachable."""

    code = "entropy_unavailable"
    status_code = 500


class InvalidCharset(LoyaltyError):
    """Charset for random strings must have 2..256 symbols."""

    code = "invalid_charset"
    status_code = 500


class InvalidAmount(LoyaltyError):
    """Amount text is not a non-negative decimal number."""

    code = "invalid_amount"
    status_code = 400


class MalformedPayload(LoyaltyError):
    """QR frame, JSON body or one of its base64 fields could not be decoded."""

    code = "malformed_payload"
    status_code = 400


class MissingAddress(LoyaltyError):
    """The sign-in challenge carries no wallet address."""

    code = "missing_address"
    status_code = 400


class InvalidProof(LoyaltyError):
    """Signed message or signature does not match the challenge."""

    code = "invalid_proof"
    status_code = 400


class ReplayDetected(LoyaltyError):
    """The replay nonce (or the proof it wraps) was already consumed."""

    code = "replay_detected"
    status_code = 409


class SettlementFailed(LoyaltyError):
    """The ledger rejected the transaction or it never reached the ledger."""

    code = "settlement_failed"
    status_code = 502


class AmbiguousConfirmation(LoyaltyError):
    """Submission outcome unknown; reconcile before retrying."""

    code = "ambiguous_confirmation"
    status_code = 409

    def __init__(self, message: str = "", signature: str | None = None) -> None:
        super().__init__(message)
        self.signature = signature


class AssetNotConfigured(LoyaltyError):
    """No loyalty asset identity has been created yet."""

    code = "asset_not_configured"
    status_code = 500


class IssuerWalletError(LoyaltyError):
    """Raised when the issuer wallet cannot be resolved."""

    code = "issuer_wallet_error"
    status_code = 500


class LedgerError(LoyaltyError):
    """Transport or RPC failure talking to the ledger network."""

    code = "ledger_error"
    status_code = 502
