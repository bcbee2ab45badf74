import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from app.core.errors import AmbiguousConfirmation, LedgerError, SettlementFailed
from app.services import token_program
from app.services.settlement import SettlementEngine
from tests.conftest import SOL
from tests.fake_ledger import RENT_EXEMPT_LAMPORTS


@pytest.fixture
def loyalty(settlement: SettlementEngine, issuer: Keypair):
    return settlement.create_asset(issuer)


class TestCreateAsset:
    def test_asset_identity(self, ledger, loyalty, issuer):
        assert loyalty.decimals == 0
        assert loyalty.issuer == issuer.pubkey()
        assert loyalty.program_id == token_program.TOKEN_2022_PROGRAM_ID
        mint = ledger.mints[str(loyalty.mint)]
        assert mint.initialized
        assert mint.mint_authority == str(issuer.pubkey())
        assert mint.permanent_delegate == str(issuer.pubkey())

    def test_rent_paid_by_issuer(self, ledger, loyalty, issuer):
        assert ledger.get_balance(issuer.pubkey()) == 10 * SOL - RENT_EXEMPT_LAMPORTS

    def test_single_transaction(self, ledger, loyalty):
        assert len(ledger.submitted) == 1
        assert len(ledger.submitted[0].message.instructions) == 3

    def test_unfunded_issuer(self, settlement):
        with pytest.raises(SettlementFailed):
            settlement.create_asset(Keypair())


class TestMintAndRead:
    def test_mint_creates_account(self, settlement, ledger, loyalty, issuer, holder):
        assert settlement.read_balance(holder.pubkey(), loyalty) == 0

        settlement.mint(issuer, holder.pubkey(), 100, loyalty)

        assert settlement.read_balance(holder.pubkey(), loyalty) == 100
        assert ledger.mints[str(loyalty.mint)].supply == 100

    def test_mint_twice_reuses_account(self, settlement, loyalty, issuer, holder):
        settlement.mint(issuer, holder.pubkey(), 100, loyalty)
        settlement.mint(issuer, holder.pubkey(), 5, loyalty)
        assert settlement.read_balance(holder.pubkey(), loyalty) == 105

    def test_only_mint_authority_can_mint(self, settlement, ledger, loyalty, holder):
        stranger = Keypair()
        ledger.airdrop(stranger.pubkey(), SOL)
        with pytest.raises(SettlementFailed):
            settlement.mint(stranger, holder.pubkey(), 100, loyalty)
        assert settlement.read_balance(holder.pubkey(), loyalty) == 0

    def test_read_balances_fans_out(self, settlement, ledger, loyalty, issuer, holder):
        ledger.airdrop(holder.pubkey(), 3 * SOL)
        settlement.mint(issuer, holder.pubkey(), 7, loyalty)
        balances = settlement.read_balances(holder.pubkey(), loyalty)
        assert balances.native == 3 * SOL
        assert balances.asset.raw == 7

    def test_corrupt_account_data(self, settlement, ledger, loyalty):
        ledger.get_token_account_data = lambda owner, mint: bytes(40)
        with pytest.raises(LedgerError):
            settlement.read_balance(Pubkey.new_unique(), loyalty)


class TestTransfers:
    def test_delegate_moves_without_holder_signature(self, settlement, ledger, loyalty, issuer, holder):
        settlement.mint(issuer, holder.pubkey(), 100, loyalty)

        settlement.transfer_as_delegate(issuer, holder.pubkey(), issuer.pubkey(), 50, loyalty)

        assert settlement.read_balance(holder.pubkey(), loyalty) == 50
        assert settlement.read_balance(issuer.pubkey(), loyalty) == 50
        signer_keys = ledger.submitted[-1].message.account_keys[
            : ledger.submitted[-1].message.header.num_required_signatures
        ]
        assert holder.pubkey() not in signer_keys

    def test_owner_transfer(self, settlement, ledger, loyalty, issuer, holder):
        ledger.airdrop(holder.pubkey(), SOL)
        settlement.mint(issuer, holder.pubkey(), 10, loyalty)
        other = Pubkey.new_unique()

        settlement.transfer_as_owner(holder, other, 4, loyalty)

        assert settlement.read_balance(holder.pubkey(), loyalty) == 6
        assert settlement.read_balance(other, loyalty) == 4

    def test_owner_transfer_with_fee_payer(self, settlement, loyalty, issuer, holder):
        settlement.mint(issuer, holder.pubkey(), 10, loyalty)
        settlement.transfer_as_owner(holder, issuer.pubkey(), 10, loyalty, fee_payer=issuer)
        assert settlement.read_balance(holder.pubkey(), loyalty) == 0

    def test_insufficient_balance_changes_nothing(self, settlement, ledger, loyalty, issuer, holder):
        settlement.mint(issuer, holder.pubkey(), 10, loyalty)
        with pytest.raises(SettlementFailed):
            settlement.transfer_as_delegate(issuer, holder.pubkey(), issuer.pubkey(), 11, loyalty)
        assert settlement.read_balance(holder.pubkey(), loyalty) == 10
        # the idempotent account creation in the same transaction was rolled back too
        assert ledger.get_token_account_data(issuer.pubkey(), loyalty.mint) is None

    def test_non_delegate_cannot_move_funds(self, settlement, ledger, loyalty, issuer, holder):
        settlement.mint(issuer, holder.pubkey(), 10, loyalty)
        thief = Keypair()
        ledger.airdrop(thief.pubkey(), SOL)
        with pytest.raises(SettlementFailed):
            settlement.transfer_as_delegate(thief, holder.pubkey(), thief.pubkey(), 5, loyalty)
        assert settlement.read_balance(holder.pubkey(), loyalty) == 10

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount(self, settlement, loyalty, issuer, holder, amount):
        with pytest.raises(ValueError):
            settlement.transfer_as_delegate(issuer, holder.pubkey(), issuer.pubkey(), amount, loyalty)


class TestFailureClassification:
    def test_send_failure_passes_through(self, settlement, ledger, loyalty, issuer, holder):
        ledger.fail_send = SettlementFailed("rejected")
        with pytest.raises(SettlementFailed):
            settlement.mint(issuer, holder.pubkey(), 1, loyalty)

    def test_ledger_error_on_send_is_settlement_failure(self, settlement, ledger, loyalty, issuer, holder):
        ledger.fail_send = LedgerError("node unavailable")
        with pytest.raises(SettlementFailed):
            settlement.mint(issuer, holder.pubkey(), 1, loyalty)

    def test_confirmation_crash_is_ambiguous(self, settlement, ledger, loyalty, issuer, holder):
        ledger.fail_confirm = RuntimeError("connection reset")
        with pytest.raises(AmbiguousConfirmation) as exc_info:
            settlement.mint(issuer, holder.pubkey(), 1, loyalty)
        assert exc_info.value.signature

    def test_blockhash_unavailable(self, settlement, ledger, loyalty, issuer, holder):
        def _fail():
            raise LedgerError("down")

        ledger.latest_blockhash = _fail
        with pytest.raises(SettlementFailed):
            settlement.mint(issuer, holder.pubkey(), 1, loyalty)


class TestSnapshot:
    def test_refresh(self, settlement, ledger, loyalty, issuer, holder):
        ledger.airdrop(holder.pubkey(), SOL)
        first = settlement.mint(issuer, holder.pubkey(), 3, loyalty)
        second = settlement.transfer_as_owner(holder, issuer.pubkey(), 1, loyalty)

        snapshot = settlement.refresh(holder.pubkey(), loyalty)

        assert snapshot.owner == holder.pubkey()
        assert snapshot.balances.native == SOL
        assert snapshot.balances.asset.raw == 2
        assert [r.signature for r in snapshot.history] == [second, first]

    def test_refresh_without_asset(self, settlement, ledger, holder):
        ledger.airdrop(holder.pubkey(), 5)
        snapshot = settlement.refresh(holder.pubkey())
        assert snapshot.balances.native == 5
        assert snapshot.balances.asset.raw == 0
        assert snapshot.history == []
