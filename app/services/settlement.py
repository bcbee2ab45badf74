"""
Ledger settlement engine.

Composes, signs, submits and confirms Token-2022 transactions for the loyalty
asset, and reads balances straight out of raw token account bytes.

The asset is created with the issuer as *permanent delegate*: the issuer may
move funds out of any holder's account without the holder co-signing. Redemption
uses that path (``transfer_as_delegate``) once the holder's sign-in proof has
been verified.

Every settlement call returns only after the ledger reports the transaction
confirmed. Errors:
- SettlementFailed: rejected or never delivered; nothing was applied
- AmbiguousConfirmation: outcome unknown; do NOT resubmit blindly, the delegate
  authority could move funds twice
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction

from app.core.amounts import AssetAmount
from app.core.config import settings
from app.core.errors import (
    AmbiguousConfirmation,
    LedgerError,
    LoyaltyError,
    SettlementFailed,
)
from app.services import token_program
from app.services.ledger_client import (
    DEFAULT_HISTORY_LIMIT,
    LedgerClient,
    TransactionRecord,
    sort_history,
)

logger = logging.getLogger(__name__)

ASSET_DECIMALS = 0


def _short(pk) -> str:
    text = str(pk)
    return f"{text[:4]}...{text[-4:]}" if len(text) > 10 else text


@dataclass(frozen=True)
class LoyaltyAsset:
    """Identity of the loyalty asset on the ledger."""

    mint: Pubkey
    issuer: Pubkey
    decimals: int = ASSET_DECIMALS
    program_id: Pubkey = token_program.TOKEN_2022_PROGRAM_ID
    name: str = "Loyalty Points"
    symbol: str = "LOYAL"

    def amount(self, raw: int) -> AssetAmount:
        return AssetAmount(raw, self.decimals)


@dataclass(frozen=True)
class Balances:
    native: int
    asset: AssetAmount


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time view of one account, produced on demand by ``refresh``."""

    owner: Pubkey
    balances: Balances
    history: List[TransactionRecord] = field(default_factory=list)


class SettlementEngine:
    def __init__(self, ledger: LedgerClient) -> None:
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_balance(self, owner: Pubkey, asset: LoyaltyAsset) -> int:
        """Raw asset balance of *owner*; zero when the account does not exist."""
        data = self.ledger.get_token_account_data(owner, asset.mint)
        if data is None:
            logger.debug("no token account for %s", _short(owner))
            return 0
        return token_program.read_token_amount(data)

    def read_native_balance(self, owner: Pubkey) -> int:
        return self.ledger.get_balance(owner)

    def read_balances(self, owner: Pubkey, asset: LoyaltyAsset) -> Balances:
        """Native and asset balance, fetched concurrently."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            native = pool.submit(self.read_native_balance, owner)
            raw = pool.submit(self.read_balance, owner, asset)
            return Balances(native=native.result(), asset=asset.amount(raw.result()))

    def recent_transactions(
        self, owner: Pubkey, limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        limit = limit or settings.HISTORY_LIMIT or DEFAULT_HISTORY_LIMIT
        return sort_history(self.ledger.get_signatures_for_address(owner, limit), limit)

    def refresh(self, owner: Pubkey, asset: Optional[LoyaltyAsset] = None) -> AccountSnapshot:
        """Pull a fresh snapshot; callers decide how often."""
        if asset is None:
            balances = Balances(
                native=self.read_native_balance(owner),
                asset=AssetAmount(0, ASSET_DECIMALS),
            )
        else:
            balances = self.read_balances(owner, asset)
        return AccountSnapshot(
            owner=owner, balances=balances, history=self.recent_transactions(owner)
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _submit(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: Sequence[Keypair],
    ) -> str:
        """Sign with *signers*, submit, and wait for confirmation."""
        try:
            blockhash, last_valid_block_height = self.ledger.latest_blockhash()
        except LedgerError as exc:
            raise SettlementFailed(f"could not fetch blockhash: {exc}") from exc

        transaction = Transaction.new_signed_with_payer(
            list(instructions), payer.pubkey(), list(signers), blockhash
        )
        try:
            signature = self.ledger.send_transaction(transaction)
        except LoyaltyError as exc:
            if isinstance(exc, (SettlementFailed, AmbiguousConfirmation)):
                raise
            raise SettlementFailed(f"submission failed: {exc}") from exc

        logger.info("transaction submitted: %s", signature)
        try:
            self.ledger.confirm_transaction(signature, last_valid_block_height)
        except (SettlementFailed, AmbiguousConfirmation):
            raise
        except Exception as exc:
            raise AmbiguousConfirmation(
                f"confirmation of {signature} failed: {exc}", signature=str(signature)
            ) from exc
        logger.info("transaction confirmed: %s", signature)
        return str(signature)

    def create_asset(
        self,
        authority: Keypair,
        mint_keypair: Optional[Keypair] = None,
    ) -> LoyaltyAsset:
        """
        Create the loyalty asset in one atomic transaction.

        * allocates the mint account sized for the permanent-delegate extension
        * designates *authority* as permanent delegate
        * initialises the mint: zero decimals, *authority* as mint authority,
          no freeze authority
        """
        mint_keypair = mint_keypair or Keypair()
        mint = mint_keypair.pubkey()
        program_id = token_program.TOKEN_2022_PROGRAM_ID
        space = token_program.MINT_WITH_PERMANENT_DELEGATE_SIZE
        try:
            lamports = self.ledger.minimum_balance_for_rent_exemption(space)
        except LedgerError as exc:
            raise SettlementFailed(f"could not fetch rent exemption: {exc}") from exc

        instructions = [
            create_account(
                CreateAccountParams(
                    from_pubkey=authority.pubkey(),
                    to_pubkey=mint,
                    lamports=lamports,
                    space=space,
                    owner=program_id,
                )
            ),
            token_program.initialize_permanent_delegate(mint, authority.pubkey(), program_id),
            token_program.initialize_mint(mint, ASSET_DECIMALS, authority.pubkey(), None, program_id),
        ]
        signature = self._submit(instructions, authority, [authority, mint_keypair])
        logger.info("created asset %s (tx %s)", mint, signature)
        return LoyaltyAsset(
            mint=mint,
            issuer=authority.pubkey(),
            decimals=ASSET_DECIMALS,
            program_id=program_id,
            name=settings.ASSET_NAME,
            symbol=settings.ASSET_SYMBOL,
        )

    def mint(
        self,
        authority: Keypair,
        destination: Pubkey,
        amount: int,
        asset: LoyaltyAsset,
    ) -> str:
        """Credit *amount* raw units to *destination*, creating its account if absent."""
        destination_ata = token_program.get_associated_token_address(
            destination, asset.mint, asset.program_id
        )
        instructions = [
            token_program.create_associated_token_account_idempotent(
                authority.pubkey(), destination, asset.mint, asset.program_id
            ),
            token_program.mint_to_checked(
                asset.mint, destination_ata, authority.pubkey(), amount, asset.decimals, asset.program_id
            ),
        ]
        logger.info("minting %d to %s", amount, _short(destination))
        return self._submit(instructions, authority, [authority])

    def _transfer(
        self,
        payer: Keypair,
        authority: Keypair,
        source_owner: Pubkey,
        destination_owner: Pubkey,
        amount: int,
        asset: LoyaltyAsset,
    ) -> str:
        if amount <= 0:
            raise ValueError("transfer amount must be positive")
        source_ata = token_program.get_associated_token_address(
            source_owner, asset.mint, asset.program_id
        )
        destination_ata = token_program.get_associated_token_address(
            destination_owner, asset.mint, asset.program_id
        )
        instructions = [
            token_program.create_associated_token_account_idempotent(
                payer.pubkey(), destination_owner, asset.mint, asset.program_id
            ),
            token_program.transfer_checked(
                source_ata,
                asset.mint,
                destination_ata,
                authority.pubkey(),
                amount,
                asset.decimals,
                asset.program_id,
            ),
        ]
        signers = [payer] if payer.pubkey() == authority.pubkey() else [payer, authority]
        return self._submit(instructions, payer, signers)

    def transfer_as_delegate(
        self,
        delegate: Keypair,
        source_owner: Pubkey,
        destination_owner: Pubkey,
        amount: int,
        asset: LoyaltyAsset,
    ) -> str:
        """
        Move *amount* from *source_owner* to *destination_owner* under the
        permanent delegate's authority; the source owner does not sign.
        """
        logger.info(
            "delegate transfer %d from %s to %s",
            amount,
            _short(source_owner),
            _short(destination_owner),
        )
        return self._transfer(delegate, delegate, source_owner, destination_owner, amount, asset)

    def transfer_as_owner(
        self,
        owner: Keypair,
        destination_owner: Pubkey,
        amount: int,
        asset: LoyaltyAsset,
        fee_payer: Optional[Keypair] = None,
    ) -> str:
        """Ordinary transfer signed by the source owner."""
        logger.info("owner transfer %d from %s to %s", amount, _short(owner.pubkey()), _short(destination_owner))
        return self._transfer(
            fee_payer or owner, owner, owner.pubkey(), destination_owner, amount, asset
        )
