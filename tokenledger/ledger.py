"""
ledger.py - Stateful Token Ledger

The TokenLedger class is the single owner of token state: balances, minters,
allowances, mint records, total supply, the paused flag and the admin.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements the TokenView protocol for safe read-only access
    - Executes commands atomically (every check passes before the first write)
    - Serializes commands behind one lock so no caller sees partial state
    - Logs every applied command, enabling clone(), clone_at() and replay()
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple, Any
import threading

from .core import (
    # Types
    AllowanceKey, BalanceMap, Command, CommandRecord, CommandType,
    ExecuteResult, LedgerSnapshot, MintRecord, Principal, Receipt,
    # Constants
    BOOTSTRAP_ADMIN, MAX_METADATA_LEN,
    TOKEN_DECIMALS, TOKEN_NAME, TOKEN_SYMBOL,
    # Exceptions
    AlreadyRegistered, InsufficientBalance, InvalidAmount, InvalidMinter,
    InvalidRecipient, InvalidSender, LedgerError, MetadataTooLong, Paused,
    Unauthorized,
)


class TokenLedger:
    """
    Fungible-token ledger with ordered validation and a full audit trail.

    Design Principles:
        - Always validates: each command runs its own fixed sequence of checks
          and stops at the first failure. Nothing is written until every check
          has passed, so a rejected command leaves no trace.
        - Always logs: every applied command is recorded in command_log.

    Thread Safety:
        Commands and queries share one re-entrant lock, so commands execute
        one at a time and queries only ever see committed state. snapshot()
        returns a frozen copy for lock-free reading.

    Example:
        ledger = TokenLedger()
        ledger.add_minter("deployer", "station_7")
        ledger.mint("station_7", 1_000_000, "alice", "Recycled 1kg plastic")
        ledger.transfer("alice", 250_000, "alice", "bob")
        ledger.get_balance("bob")   # 250000
    """

    def __init__(
        self,
        admin: Principal = BOOTSTRAP_ADMIN,
        initial_time: Optional[datetime] = None,
        clock: Optional[Callable[[], datetime]] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            admin: Bootstrap principal; becomes admin and the first minter
            initial_time: Starting logical time (default: clock() if a clock
                          is given, else 1970-01-01)
            clock: Optional wall-clock source consulted before each command;
                   ledger time follows it but never moves backwards
            verbose: Print one line per applied or rejected command (default: True)
        """
        self.verbose = verbose
        self._clock = clock
        if initial_time is None:
            initial_time = clock() if clock is not None else datetime(1970, 1, 1)
        self._initial_time: datetime = initial_time
        self._current_time: datetime = initial_time
        self._initial_admin = admin

        self._balances: Dict[Principal, int] = {}
        self._minters: Dict[Principal, bool] = {admin: True}
        self._allowances: Dict[AllowanceKey, int] = {}
        self._mint_records: Dict[int, MintRecord] = {}
        self._mint_history: List[MintRecord] = []
        self._total_supply: int = 0
        self._paused: bool = False
        self._admin: Principal = admin

        self._command_log: List[CommandRecord] = []
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        self._lock = threading.RLock()

    # ========================================================================
    # TokenView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def get_name(self) -> str:
        return TOKEN_NAME

    def get_symbol(self) -> str:
        return TOKEN_SYMBOL

    def get_decimals(self) -> int:
        return TOKEN_DECIMALS

    def get_total_supply(self) -> int:
        with self._lock:
            return self._total_supply

    def get_balance(self, account: Principal) -> int:
        """Balance of account in base units (0 if never credited)."""
        with self._lock:
            return self._balances.get(account, 0)

    def get_mint_record(self, mint_id: int) -> Optional[MintRecord]:
        """
        Look up a mint record.

        Mint ids are the total supply right after the mint that wrote them,
        so the first mint of 1_000_000 is stored under 1_000_000. After a
        burn, a later mint can reach the same supply again and its record
        replaces the earlier one under that id. mint_history keeps every
        record ever written.

        Returns:
            The latest MintRecord stored under mint_id, or None if no mint
            produced that id
        """
        with self._lock:
            return self._mint_records.get(mint_id)

    def is_minter(self, account: Principal) -> bool:
        with self._lock:
            return self._minters.get(account, False)

    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def get_admin(self) -> Principal:
        with self._lock:
            return self._admin

    def get_allowance(self, owner: Principal, spender: Principal) -> int:
        """Amount spender may still move out of owner's balance (0 if never set)."""
        with self._lock:
            return self._allowances.get(AllowanceKey(owner, spender), 0)

    # ========================================================================
    # AUDIT QUERIES
    # ========================================================================

    @property
    def command_log(self) -> Tuple[CommandRecord, ...]:
        """Every applied command, oldest first."""
        with self._lock:
            return tuple(self._command_log)

    @property
    def mint_history(self) -> Tuple[MintRecord, ...]:
        """Every mint record ever written, in creation order."""
        with self._lock:
            return tuple(self._mint_history)

    def list_accounts(self) -> Set[Principal]:
        """All principals that have ever held a balance entry."""
        with self._lock:
            return set(self._balances)

    def get_balances(self) -> BalanceMap:
        """Copy of every balance entry, zero entries included."""
        with self._lock:
            return dict(self._balances)

    def snapshot(self) -> LedgerSnapshot:
        """
        Take a frozen, private copy of the complete state.

        The copy is made under the lock, so it always corresponds to a state
        between two commands.
        """
        with self._lock:
            return LedgerSnapshot(
                total_supply=self._total_supply,
                paused=self._paused,
                admin=self._admin,
                balances=dict(self._balances),
                minters=dict(self._minters),
                allowances=dict(self._allowances),
                mint_records=dict(self._mint_records),
                sequence=self._next_sequence,
            )

    def state_digest(self) -> str:
        """Content hash of the observable state (see LedgerSnapshot.digest)."""
        return self.snapshot().digest()

    def verify_supply(self) -> Dict[str, Any]:
        """
        Verify the conservation and non-negativity invariants.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every invariant holds
            - 'total_supply': int - Recorded total supply
            - 'balance_sum': int - Sum of all balances
            - 'negative_balances': Dict - Accounts with a balance below zero
            - 'negative_allowances': Dict - Allowance entries below zero

        Example:
            result = ledger.verify_supply()
            assert result['valid'], result
        """
        with self._lock:
            balance_sum = sum(self._balances.values())
            negative_balances = {a: v for a, v in self._balances.items() if v < 0}
            negative_allowances = {k: v for k, v in self._allowances.items() if v < 0}
            total = self._total_supply
        return {
            'valid': (
                balance_sum == total
                and total >= 0
                and not negative_balances
                and not negative_allowances
            ),
            'total_supply': total,
            'balance_sum': balance_sum,
            'negative_balances': negative_balances,
            'negative_allowances': negative_allowances,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger (caught up with the clock, if any)."""
        with self._lock:
            self._sync_clock()
            return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            self._sync_clock()
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    def _sync_clock(self) -> None:
        if self._clock is None:
            return
        now = self._clock()
        if now > self._current_time:
            self._current_time = now

    # ========================================================================
    # ADMINISTRATIVE COMMANDS
    # ========================================================================

    def set_admin(self, caller: Principal, new_admin: Principal) -> bool:
        """Hand admin rights to new_admin. The caller loses them immediately."""
        self._execute(Command(CommandType.SET_ADMIN, caller, (new_admin,)))
        return True

    def pause(self, caller: Principal) -> bool:
        """Stop mint, transfer, burn and transfer_from. Pausing twice is fine."""
        self._execute(Command(CommandType.PAUSE, caller))
        return True

    def unpause(self, caller: Principal) -> bool:
        self._execute(Command(CommandType.UNPAUSE, caller))
        return True

    def add_minter(self, caller: Principal, minter: Principal) -> bool:
        """
        Register a new minter.

        A principal that was ever registered (even if since revoked) is
        rejected with AlreadyRegistered.
        """
        self._execute(Command(CommandType.ADD_MINTER, caller, (minter,)))
        return True

    def remove_minter(self, caller: Principal, minter: Principal) -> bool:
        """Revoke minting rights. The registry entry stays, flagged False."""
        self._execute(Command(CommandType.REMOVE_MINTER, caller, (minter,)))
        return True

    # ========================================================================
    # VALUE COMMANDS
    # ========================================================================

    def mint(
        self,
        caller: Principal,
        amount: int,
        recipient: Principal,
        metadata: str,
    ) -> bool:
        """
        Create new supply for recipient and write a MintRecord.

        Checks, in order: not paused, caller is an active minter, amount > 0,
        recipient is not the caller, metadata within MAX_METADATA_LEN.

        Raises:
            Paused, InvalidMinter, InvalidAmount, InvalidRecipient, MetadataTooLong
        """
        self._execute(Command(CommandType.MINT, caller, (amount, recipient, metadata)))
        return True

    def transfer(
        self,
        caller: Principal,
        amount: int,
        sender: Principal,
        recipient: Principal,
    ) -> bool:
        """
        Move amount from sender to recipient on the sender's own authority.

        Checks, in order: not paused, caller is sender, amount > 0,
        sufficient balance. Transferring to oneself succeeds with no net effect.

        Raises:
            Paused, InvalidSender, InvalidAmount, InsufficientBalance
        """
        self._execute(Command(CommandType.TRANSFER, caller, (amount, sender, recipient)))
        return True

    def burn(self, caller: Principal, amount: int) -> bool:
        """
        Destroy amount of the caller's own balance.

        Raises:
            Paused, InvalidAmount, InsufficientBalance
        """
        self._execute(Command(CommandType.BURN, caller, (amount,)))
        return True

    def set_allowance(self, caller: Principal, spender: Principal, amount: int) -> bool:
        """
        Let spender move up to amount out of the caller's balance.

        Overwrites any previous allowance; zero revokes. Works while paused.
        """
        self._execute(Command(CommandType.SET_ALLOWANCE, caller, (spender, amount)))
        return True

    def transfer_from(
        self,
        caller: Principal,
        amount: int,
        owner: Principal,
        recipient: Principal,
    ) -> bool:
        """
        Move amount out of owner's balance using the caller's allowance.

        An allowance shortfall is reported as InsufficientBalance, the same
        code as a balance shortfall.

        Raises:
            Paused, InsufficientBalance
        """
        self._execute(Command(CommandType.TRANSFER_FROM, caller, (amount, owner, recipient)))
        return True

    # ========================================================================
    # COMMAND EXECUTION
    # ========================================================================

    def execute(self, command: Command) -> Receipt:
        """
        Execute a Command without raising on business-rule violations.

        This is the boundary for hosts (RPC layers, CLIs, replay tools) that
        want a result value rather than an exception.

        Returns:
            Receipt with ExecuteResult.APPLIED and the log sequence number, or
            ExecuteResult.REJECTED and the ErrorCode of the first failed check
        """
        try:
            sequence = self._execute(command)
        except LedgerError as e:
            return Receipt(ExecuteResult.REJECTED, command, error=e.code)
        return Receipt(ExecuteResult.APPLIED, command, sequence=sequence)

    def _execute(self, command: Command) -> int:
        """
        Validate then apply one command under the ledger lock.

        Returns:
            Sequence number of the new command_log entry

        Raises:
            LedgerError subclass of the first failed check
        """
        validate = getattr(self, f"_validate_{command.op.value}")
        apply = getattr(self, f"_apply_{command.op.value}")
        with self._lock:
            self._sync_clock()
            try:
                validate(command.caller, *command.args)
            except LedgerError as e:
                if self.verbose:
                    print(f"✗ REJECTED: {command!r}: {e.code.name} ({e.code.value})")
                raise

            apply(command.caller, *command.args)

            sequence = self._next_sequence
            self._next_sequence += 1
            self._command_log.append(CommandRecord(
                sequence=sequence,
                command=command,
                execution_time=self._current_time,
            ))
            if self.verbose:
                print(f"✓ APPLIED #{sequence}: {command!r}")
            return sequence

    # Shared preconditions. Each validator calls them in its own order.

    def _require_admin(self, caller: Principal) -> None:
        if caller != self._admin:
            raise Unauthorized(f"{caller!r} is not the admin")

    def _require_active(self) -> None:
        if self._paused:
            raise Paused("ledger is paused")

    def _require_positive(self, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"amount must be positive, got {amount}")

    def _require_balance(self, account: Principal, amount: int) -> None:
        if self._balances.get(account, 0) < amount:
            raise InsufficientBalance(f"{account!r} cannot cover {amount}")

    # Validators: raise on the first failed check, never mutate.

    def _validate_set_admin(self, caller, new_admin) -> None:
        self._require_admin(caller)

    def _validate_pause(self, caller) -> None:
        self._require_admin(caller)

    def _validate_unpause(self, caller) -> None:
        self._require_admin(caller)

    def _validate_add_minter(self, caller, minter) -> None:
        self._require_admin(caller)
        # Presence, not truthiness: revoked minters stay registered
        if minter in self._minters:
            raise AlreadyRegistered(f"{minter!r} is already in the minter registry")

    def _validate_remove_minter(self, caller, minter) -> None:
        self._require_admin(caller)

    def _validate_mint(self, caller, amount, recipient, metadata) -> None:
        self._require_active()
        if not self._minters.get(caller, False):
            raise InvalidMinter(f"{caller!r} is not an active minter")
        self._require_positive(amount)
        if recipient == caller:
            raise InvalidRecipient("minters cannot mint to themselves")
        if len(metadata) > MAX_METADATA_LEN:
            raise MetadataTooLong(
                f"metadata is {len(metadata)} characters, limit is {MAX_METADATA_LEN}"
            )

    def _validate_transfer(self, caller, amount, sender, recipient) -> None:
        self._require_active()
        if caller != sender:
            raise InvalidSender(f"{caller!r} cannot transfer on behalf of {sender!r}")
        self._require_positive(amount)
        self._require_balance(sender, amount)

    def _validate_burn(self, caller, amount) -> None:
        self._require_active()
        self._require_positive(amount)
        self._require_balance(caller, amount)

    def _validate_set_allowance(self, caller, spender, amount) -> None:
        pass

    def _validate_transfer_from(self, caller, amount, owner, recipient) -> None:
        self._require_active()
        allowance = self._allowances.get(AllowanceKey(owner, caller), 0)
        if allowance < amount:
            raise InsufficientBalance(
                f"allowance of {caller!r} over {owner!r} is {allowance}, needs {amount}"
            )
        self._require_balance(owner, amount)

    # Appliers: run only after validation passed, cannot fail.

    def _apply_set_admin(self, caller, new_admin) -> None:
        self._admin = new_admin

    def _apply_pause(self, caller) -> None:
        self._paused = True

    def _apply_unpause(self, caller) -> None:
        self._paused = False

    def _apply_add_minter(self, caller, minter) -> None:
        self._minters[minter] = True

    def _apply_remove_minter(self, caller, minter) -> None:
        self._minters[minter] = False

    def _apply_mint(self, caller, amount, recipient, metadata) -> None:
        self._credit(recipient, amount)
        self._total_supply += amount
        mint_id = self._total_supply
        record = MintRecord(
            amount=amount,
            recipient=recipient,
            metadata=metadata,
            timestamp=self._current_time,
            minter=caller,
        )
        if mint_id in self._mint_records and self.verbose:
            print(f"⚠️  mint id {mint_id} reused, earlier record kept in mint_history only")
        self._mint_records[mint_id] = record
        self._mint_history.append(record)

    def _apply_transfer(self, caller, amount, sender, recipient) -> None:
        self._debit(sender, amount)
        self._credit(recipient, amount)

    def _apply_burn(self, caller, amount) -> None:
        self._debit(caller, amount)
        self._total_supply -= amount

    def _apply_set_allowance(self, caller, spender, amount) -> None:
        self._allowances[AllowanceKey(caller, spender)] = amount

    def _apply_transfer_from(self, caller, amount, owner, recipient) -> None:
        key = AllowanceKey(owner, caller)
        self._debit(owner, amount)
        self._credit(recipient, amount)
        self._allowances[key] = self._allowances.get(key, 0) - amount

    def _credit(self, account: Principal, amount: int) -> None:
        self._balances[account] = self._balances.get(account, 0) + amount

    def _debit(self, account: Principal, amount: int) -> None:
        self._balances[account] = self._balances.get(account, 0) - amount

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> TokenLedger:
        """
        Create a deep copy of this ledger.

        All state is fully independent: commands on the clone do not affect
        the original, and vice versa. MintRecords are immutable and shared.

        Returns:
            A new TokenLedger with identical state, log and time
        """
        with self._lock:
            cloned = TokenLedger(
                admin=self._initial_admin,
                initial_time=self._initial_time,
                clock=self._clock,
                verbose=self.verbose,
            )
            cloned._current_time = self._current_time
            cloned._balances = dict(self._balances)
            cloned._minters = dict(self._minters)
            cloned._allowances = dict(self._allowances)
            cloned._mint_records = dict(self._mint_records)
            cloned._mint_history = list(self._mint_history)
            cloned._total_supply = self._total_supply
            cloned._paused = self._paused
            cloned._admin = self._admin
            cloned._command_log = list(self._command_log)
            cloned._next_sequence = self._next_sequence
            return cloned

    def replay(self, upto: Optional[int] = None) -> TokenLedger:
        """
        Create a new ledger by re-executing the command log.

        The new ledger starts from the same bootstrap admin and initial time,
        runs on a logical clock, and advances that clock to each record's
        execution_time so mint timestamps come out identical.

        Args:
            upto: Replay only records with sequence < upto (default: all)

        Returns:
            New TokenLedger whose state_digest() matches this ledger's state
            after the replayed prefix

        Raises:
            LedgerError: If a logged command is rejected during replay
        """
        records = self.command_log
        if upto is not None:
            records = tuple(r for r in records if r.sequence < upto)
        return self._replay_records(records)

    def clone_at(self, target_time: datetime) -> TokenLedger:
        """
        Reconstruct the ledger as it stood at target_time.

        Replays every command executed at or before target_time.

        Raises:
            ValueError: If target_time is in the future
        """
        with self._lock:
            self._sync_clock()
            if target_time > self._current_time:
                raise ValueError(f"Target time {target_time} is in the future")
            records = tuple(r for r in self._command_log if r.execution_time <= target_time)
        replayed = self._replay_records(records)
        replayed.advance_time(target_time)
        return replayed

    def _replay_records(self, records: Tuple[CommandRecord, ...]) -> TokenLedger:
        new_ledger = TokenLedger(
            admin=self._initial_admin,
            initial_time=self._initial_time,
            verbose=self.verbose,
        )
        for record in records:
            if record.execution_time > new_ledger.current_time:
                new_ledger.advance_time(record.execution_time)
            try:
                new_ledger._execute(record.command)
            except LedgerError as e:
                raise LedgerError(
                    f"Replay failed at #{record.sequence} {record.command!r}: {e.code.name}"
                ) from e
        return new_ledger
