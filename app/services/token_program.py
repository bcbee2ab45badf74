"""
Token-2022 and Associated Token Account helpers.

Instruction data and account layouts are fixed by the on-chain programs; the
offsets below must match them exactly or balances are read from the wrong bytes.
"""

import struct
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from app.core.config import settings
from app.core.errors import InvalidAmount, LedgerError

# ---------------------------------------------------------------------------
# Program ids
# ---------------------------------------------------------------------------

TOKEN_2022_PROGRAM_ID = Pubkey.from_string(settings.TOKEN_PROGRAM_ID)
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")

# ---------------------------------------------------------------------------
# Account layouts
# ---------------------------------------------------------------------------

MINT_SIZE = 82
ACCOUNT_SIZE = 165
ACCOUNT_TYPE_SIZE = 1
TLV_HEADER_SIZE = 4  # u16 extension type + u16 length
PERMANENT_DELEGATE_SIZE = 32
MINT_WITH_PERMANENT_DELEGATE_SIZE = (
    ACCOUNT_SIZE + ACCOUNT_TYPE_SIZE + TLV_HEADER_SIZE + PERMANENT_DELEGATE_SIZE
)

# token account: mint [0, 32) | owner [32, 64) | amount [64, 72) u64 little-endian
TOKEN_ACCOUNT_MINT_OFFSET = 0
TOKEN_ACCOUNT_OWNER_OFFSET = 32
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
TOKEN_ACCOUNT_AMOUNT_SIZE = 8

# ---------------------------------------------------------------------------
# Instruction tags
# ---------------------------------------------------------------------------

IX_INITIALIZE_MINT = 0
IX_TRANSFER_CHECKED = 12
IX_MINT_TO_CHECKED = 14
IX_INITIALIZE_PERMANENT_DELEGATE = 35
ATA_CREATE_IDEMPOTENT = 1

U64_MAX = 2**64 - 1


def read_token_amount(data: bytes) -> int:
    """Read the u64 balance field of a raw token account buffer."""
    end = TOKEN_ACCOUNT_AMOUNT_OFFSET + TOKEN_ACCOUNT_AMOUNT_SIZE
    if len(data) < end:
        raise LedgerError(f"token account data is {len(data)} bytes, expected at least {end}")
    return int.from_bytes(data[TOKEN_ACCOUNT_AMOUNT_OFFSET:end], "little")


def read_token_owner(data: bytes) -> Pubkey:
    return Pubkey.from_bytes(bytes(data[TOKEN_ACCOUNT_OWNER_OFFSET:TOKEN_ACCOUNT_OWNER_OFFSET + 32]))


def read_token_mint(data: bytes) -> Pubkey:
    return Pubkey.from_bytes(bytes(data[TOKEN_ACCOUNT_MINT_OFFSET:TOKEN_ACCOUNT_MINT_OFFSET + 32]))


def _check_amount(amount: int) -> None:
    if amount < 0 or amount > U64_MAX:
        raise InvalidAmount(f"amount out of u64 range: {amount}")


def get_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Pubkey:
    """Derive the associated token account of *owner* for *mint*."""
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(program_id), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_associated_token_account_idempotent(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    """Create *owner*'s associated account for *mint* unless it already exists."""
    ata = get_associated_token_address(owner, mint, program_id)
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([ATA_CREATE_IDEMPOTENT]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(program_id, is_signer=False, is_writable=False),
        ],
    )


def initialize_permanent_delegate(
    mint: Pubkey,
    delegate: Pubkey,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    """Must run before initialize_mint, on the freshly allocated mint account."""
    data = bytes([IX_INITIALIZE_PERMANENT_DELEGATE]) + bytes(delegate)
    return Instruction(
        program_id,
        data,
        [AccountMeta(mint, is_signer=False, is_writable=True)],
    )


def initialize_mint(
    mint: Pubkey,
    decimals: int,
    mint_authority: Pubkey,
    freeze_authority: Optional[Pubkey] = None,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    data = struct.pack("<BB", IX_INITIALIZE_MINT, decimals) + bytes(mint_authority)
    if freeze_authority is None:
        data += b"\x00" + bytes(32)
    else:
        data += b"\x01" + bytes(freeze_authority)
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_RENT_ID, is_signer=False, is_writable=False),
        ],
    )


def mint_to_checked(
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    _check_amount(amount)
    data = struct.pack("<BQB", IX_MINT_TO_CHECKED, amount, decimals)
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def transfer_checked(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
    program_id: Pubkey = TOKEN_2022_PROGRAM_ID,
) -> Instruction:
    """*authority* is the source owner, or the mint's permanent delegate."""
    _check_amount(amount)
    data = struct.pack("<BQB", IX_TRANSFER_CHECKED, amount, decimals)
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )
