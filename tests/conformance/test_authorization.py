"""
Authorization, Pause-Gating and Query Conformance Tests

INVARIANTS:
    ∀ admin command C, caller ≠ admin:
        execute(C) = REJECTED(UNAUTHORIZED) and state is unchanged

    paused ⟹ ∀ value command V: execute(V) = REJECTED(PAUSED), state unchanged
    unpause restores the behavior the command would have had before pausing

    ∀ query Q: Q(); Q() returns the same value twice with no command between
"""

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from tokenledger import TokenLedger, Command, CommandType, ErrorCode, BOOTSTRAP_ADMIN

from .strategies import (
    ADMIN_COMMANDS, VALUE_COMMANDS, PRINCIPALS, command, command_sequences, principals,
)


def _busy_ledger(commands) -> TokenLedger:
    ledger = TokenLedger(verbose=False)
    ledger.add_minter(BOOTSTRAP_ADMIN, "wallet_1")
    ledger.mint("wallet_1", 500_000, "wallet_2", "seed")
    ledger.set_allowance("wallet_2", "wallet_3", 200_000)
    for cmd in commands:
        ledger.execute(cmd)
    return ledger


class TestAuthorizationProperties:
    """Property-based authorization tests."""

    @given(command_sequences(max_size=20), command(ops=ADMIN_COMMANDS))
    @settings(max_examples=200)
    def test_non_admin_is_unauthorized(self, prefix, cmd):
        """
        PROPERTY: Admin commands from anyone but the admin change nothing.
        """
        ledger = _busy_ledger(prefix)
        assume(cmd.caller != ledger.get_admin())

        before = ledger.snapshot()
        receipt = ledger.execute(cmd)

        assert receipt.error is ErrorCode.UNAUTHORIZED
        assert ledger.snapshot() == before

    @given(command_sequences(max_size=20), command(ops=ADMIN_COMMANDS))
    @settings(max_examples=100)
    def test_admin_is_never_unauthorized(self, prefix, cmd):
        """
        PROPERTY: The current admin never gets UNAUTHORIZED.
        """
        ledger = _busy_ledger(prefix)
        cmd = Command(cmd.op, ledger.get_admin(), cmd.args)
        assert ledger.execute(cmd).error is not ErrorCode.UNAUTHORIZED


class TestPauseGatingProperties:
    """Property-based pause-gating tests."""

    @given(command_sequences(max_size=20), command(ops=VALUE_COMMANDS))
    @settings(max_examples=200)
    def test_paused_rejects_value_commands(self, prefix, cmd):
        """
        PROPERTY: While paused, every value command fails with PAUSED and changes nothing.
        """
        ledger = _busy_ledger(prefix)
        ledger.pause(ledger.get_admin())

        before = ledger.snapshot()
        receipt = ledger.execute(cmd)

        assert receipt.error is ErrorCode.PAUSED
        assert ledger.snapshot() == before

    @given(command_sequences(max_size=20), command(ops=VALUE_COMMANDS))
    @settings(max_examples=100)
    def test_unpause_restores_behavior(self, prefix, cmd):
        """
        PROPERTY: pause then unpause is invisible to value commands.
        """
        ledger = _busy_ledger(prefix)
        admin = ledger.get_admin()
        if ledger.is_paused():
            ledger.unpause(admin)
        reference = ledger.clone()

        ledger.pause(admin)
        ledger.unpause(admin)

        r1 = ledger.execute(cmd)
        r2 = reference.execute(cmd)
        assert (r1.result, r1.error) == (r2.result, r2.error)
        assert ledger.state_digest() == reference.state_digest()


class TestQueryIdempotence:
    """Queries are pure reads."""

    @given(command_sequences(max_size=30), principals, principals, st.integers(0, 3_000_000))
    @settings(max_examples=100)
    def test_queries_repeat(self, commands, a, b, mint_id):
        """
        PROPERTY: Calling any query twice in a row returns identical results.
        """
        ledger = _busy_ledger(commands)
        digest = ledger.state_digest()

        queries = [
            ledger.get_name, ledger.get_symbol, ledger.get_decimals,
            ledger.get_total_supply, ledger.is_paused, ledger.get_admin,
            lambda: ledger.get_balance(a),
            lambda: ledger.get_mint_record(mint_id),
            lambda: ledger.is_minter(a),
            lambda: ledger.get_allowance(a, b),
        ]
        for query in queries:
            assert query() == query()

        assert ledger.state_digest() == digest
        assert len(ledger.command_log) == len(ledger.replay().command_log)


class TestAuthorizationExamples:
    """Explicit authorization examples."""

    def test_every_admin_command_rejects_non_admin(self):
        ledger = TokenLedger(verbose=False)
        for op, args in [
            (CommandType.SET_ADMIN, ("wallet_2",)),
            (CommandType.PAUSE, ()),
            (CommandType.UNPAUSE, ()),
            (CommandType.ADD_MINTER, ("wallet_2",)),
            (CommandType.REMOVE_MINTER, (BOOTSTRAP_ADMIN,)),
        ]:
            receipt = ledger.execute(Command(op, "wallet_2", args))
            assert receipt.error is ErrorCode.UNAUTHORIZED, op
        assert ledger.command_log == ()
        assert ledger.is_minter(BOOTSTRAP_ADMIN)

    def test_pause_blocks_all_four_value_commands(self):
        ledger = TokenLedger(verbose=False)
        ledger.mint(BOOTSTRAP_ADMIN, 100, "alice", "")
        ledger.set_allowance("alice", "bob", 50)
        ledger.pause(BOOTSTRAP_ADMIN)

        for cmd in [
            Command(CommandType.MINT, BOOTSTRAP_ADMIN, (1, "alice", "")),
            Command(CommandType.TRANSFER, "alice", (1, "alice", "bob")),
            Command(CommandType.BURN, "alice", (1,)),
            Command(CommandType.TRANSFER_FROM, "bob", (1, "alice", "bob")),
        ]:
            assert ledger.execute(cmd).error is ErrorCode.PAUSED

        ledger.unpause(BOOTSTRAP_ADMIN)
        assert ledger.transfer("alice", 1, "alice", "bob") is True
