"""
Core types and pure functions for the token ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: TokenView for read-only ledger access
2. Immutable data structures: MintRecord, AllowanceKey, Command, CommandRecord,
   Receipt, LedgerSnapshot
3. Exceptions: LedgerError and the closed set of rejection kinds
4. Constants: token metadata, metadata limit, bootstrap admin
5. Display helpers: fixed-point formatting and parsing of base-unit amounts

Nothing in this module mutates ledger state. TokenLedger in ledger.py is the
only owner of mutable state.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict, is_dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
import hashlib
from typing import (
    Dict, Optional, Any, Protocol, Tuple, Hashable, NamedTuple,
    runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

TOKEN_NAME = "RecycleToken"
TOKEN_SYMBOL = "RT"

# Display-only: amounts are integers in the smallest unit.
TOKEN_DECIMALS = 6

# Maximum mint metadata length, in characters.
MAX_METADATA_LEN = 500

# Principal that deploys the ledger. It starts as admin and as the first minter.
BOOTSTRAP_ADMIN = "deployer"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque account identity. Authentication happens outside the ledger.
Principal = Hashable

# Mapping from principal to amount held, in base units.
BalanceMap = Dict[Principal, int]


# ============================================================================
# ERROR CODES & EXCEPTIONS
# ============================================================================

class ErrorCode(Enum):
    """
    Stable identity of every rejection the ledger can produce.

    The numeric values are part of the external contract: hosts and indexers
    key on them, so they never change.
    """
    UNAUTHORIZED = 100
    PAUSED = 101
    INVALID_AMOUNT = 102
    INVALID_RECIPIENT = 103
    INVALID_MINTER = 104
    ALREADY_REGISTERED = 105
    METADATA_TOO_LONG = 106
    INSUFFICIENT_BALANCE = 107
    INVALID_SENDER = 108


class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    code: Optional[ErrorCode] = None


class Unauthorized(LedgerError):
    """Raised when an administrative command is invoked by anyone but the admin."""
    code = ErrorCode.UNAUTHORIZED


class Paused(LedgerError):
    """Raised when a value-moving command is invoked while the ledger is paused."""
    code = ErrorCode.PAUSED


class InvalidAmount(LedgerError):
    """Raised when a mint, transfer or burn amount is not strictly positive."""
    code = ErrorCode.INVALID_AMOUNT


class InvalidRecipient(LedgerError):
    """Raised when a minter tries to mint to itself."""
    code = ErrorCode.INVALID_RECIPIENT


class InvalidMinter(LedgerError):
    """Raised when the caller of mint is not an active minter."""
    code = ErrorCode.INVALID_MINTER


class AlreadyRegistered(LedgerError):
    """Raised when add_minter targets a principal already present in the registry."""
    code = ErrorCode.ALREADY_REGISTERED


class MetadataTooLong(LedgerError):
    """Raised when mint metadata exceeds MAX_METADATA_LEN."""
    code = ErrorCode.METADATA_TOO_LONG


class InsufficientBalance(LedgerError):
    """Raised when a balance, or a delegated allowance, cannot cover an amount."""
    code = ErrorCode.INSUFFICIENT_BALANCE


class InvalidSender(LedgerError):
    """Raised when transfer is called on behalf of someone other than the caller."""
    code = ErrorCode.INVALID_SENDER


ERRORS_BY_CODE: Dict[ErrorCode, type] = {
    cls.code: cls
    for cls in (
        Unauthorized, Paused, InvalidAmount, InvalidRecipient, InvalidMinter,
        AlreadyRegistered, MetadataTooLong, InsufficientBalance, InvalidSender,
    )
}


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TokenView(Protocol):
    """
    Read-only interface to ledger state.

    Implemented by TokenLedger (live, lock-protected reads) and by
    LedgerSnapshot (a frozen copy that can be read from any thread).
    None of these methods can fail or mutate state.
    """

    def get_name(self) -> str:
        ...

    def get_symbol(self) -> str:
        ...

    def get_decimals(self) -> int:
        ...

    def get_total_supply(self) -> int:
        ...

    def get_balance(self, account: Principal) -> int:
        """Return the balance of an account (0 if the account was never seen)."""
        ...

    def get_mint_record(self, mint_id: int) -> Optional['MintRecord']:
        """Return the mint record stored under mint_id, or None."""
        ...

    def is_minter(self, account: Principal) -> bool:
        ...

    def is_paused(self) -> bool:
        ...

    def get_admin(self) -> Principal:
        ...

    def get_allowance(self, owner: Principal, spender: Principal) -> int:
        """Return how much spender may still move out of owner's balance."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a command execution attempt.

    APPLIED: Command passed every check and its effects were committed.
    REJECTED: Command failed a check; the ledger is exactly as it was.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class CommandType(Enum):
    """Every state-changing operation the ledger accepts."""
    SET_ADMIN = "set_admin"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    ADD_MINTER = "add_minter"
    REMOVE_MINTER = "remove_minter"
    MINT = "mint"
    TRANSFER = "transfer"
    BURN = "burn"
    SET_ALLOWANCE = "set_allowance"
    TRANSFER_FROM = "transfer_from"


# Positional argument names of each command, after the caller.
COMMAND_SIGNATURES: Dict[CommandType, Tuple[str, ...]] = {
    CommandType.SET_ADMIN: ("new_admin",),
    CommandType.PAUSE: (),
    CommandType.UNPAUSE: (),
    CommandType.ADD_MINTER: ("minter",),
    CommandType.REMOVE_MINTER: ("minter",),
    CommandType.MINT: ("amount", "recipient", "metadata"),
    CommandType.TRANSFER: ("amount", "sender", "recipient"),
    CommandType.BURN: ("amount",),
    CommandType.SET_ALLOWANCE: ("spender", "amount"),
    CommandType.TRANSFER_FROM: ("amount", "owner", "recipient"),
}

# These commands have no positivity check, so a negative amount is malformed input.
_NON_NEGATIVE_AMOUNT_COMMANDS = frozenset({
    CommandType.SET_ALLOWANCE,
    CommandType.TRANSFER_FROM,
})

_PRINCIPAL_PARAMS = frozenset({"new_admin", "minter", "recipient", "sender", "spender", "owner"})


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

class AllowanceKey(NamedTuple):
    """Ordered (owner, spender) pair. (a, b) and (b, a) are independent entries."""
    owner: Principal
    spender: Principal


@dataclass(frozen=True, slots=True)
class MintRecord:
    """
    Immutable audit entry written by every successful mint.

    Attributes:
        amount: Base units created.
        recipient: Principal credited with the new supply.
        metadata: Free text supplied by the minter (at most MAX_METADATA_LEN).
        timestamp: Ledger time at which the mint was committed.
        minter: Principal that performed the mint.
    """
    amount: int
    recipient: Principal
    metadata: str
    timestamp: datetime
    minter: Principal


def _is_amount(value: Any) -> bool:
    # bool is an int subclass but never a valid amount
    return isinstance(value, int) and not isinstance(value, bool)


def _is_principal(value: Any) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True


@dataclass(frozen=True, slots=True)
class Command:
    """
    An immutable description of one state-changing call.

    Attributes:
        op: Which operation to run.
        caller: Already-authenticated principal issuing the call.
        args: Positional arguments, in the order given by COMMAND_SIGNATURES.

    Arguments are checked for shape in __post_init__ (arity, hashable
    principals, integer amounts, string metadata). Business rules are
    checked by the ledger at execution.
    """
    op: CommandType
    caller: Principal
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not isinstance(self.op, CommandType):
            raise ValueError(f"Command op must be a CommandType, got {self.op!r}")
        if not isinstance(self.args, tuple):
            object.__setattr__(self, 'args', tuple(self.args))
        names = COMMAND_SIGNATURES[self.op]
        if len(self.args) != len(names):
            raise ValueError(
                f"{self.op.value} takes {len(names)} argument(s) {names}, got {len(self.args)}"
            )
        params = dict(zip(names, self.args))
        principals = {k: v for k, v in params.items() if k in _PRINCIPAL_PARAMS}
        principals["caller"] = self.caller
        for name, value in principals.items():
            if not _is_principal(value):
                raise ValueError(
                    f"{self.op.value} {name} must be hashable, got {type(value).__name__}"
                )
        if 'amount' in params:
            amount = params['amount']
            if not _is_amount(amount):
                raise ValueError(f"{self.op.value} amount must be int, got {type(amount).__name__}")
            if amount < 0 and self.op in _NON_NEGATIVE_AMOUNT_COMMANDS:
                raise ValueError(f"{self.op.value} amount must be non-negative, got {amount}")
        if 'metadata' in params and not isinstance(params['metadata'], str):
            raise ValueError(
                f"mint metadata must be str, got {type(params['metadata']).__name__}"
            )

    @property
    def params(self) -> Dict[str, Any]:
        """Arguments keyed by name."""
        return dict(zip(COMMAND_SIGNATURES[self.op], self.args))

    def __repr__(self) -> str:
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        if rendered:
            return f"{self.op.value}(caller={self.caller!r}, {rendered})"
        return f"{self.op.value}(caller={self.caller!r})"


@dataclass(frozen=True, slots=True)
class CommandRecord:
    """
    A committed command in the ledger's audit log.

    Attributes:
        sequence: Monotonic position in the log, starting at 0.
        command: The command that was applied.
        execution_time: Ledger time at which it was applied.
    """
    sequence: int
    command: Command
    execution_time: datetime


@dataclass(frozen=True, slots=True)
class Receipt:
    """
    Outcome of TokenLedger.execute().

    Attributes:
        result: APPLIED or REJECTED.
        command: The command that was submitted.
        error: The rejection code, when result is REJECTED.
        sequence: Log position, when result is APPLIED.
    """
    result: ExecuteResult
    command: Command
    error: Optional[ErrorCode] = None
    sequence: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.result is ExecuteResult.APPLIED

    def raise_for_error(self) -> None:
        """Re-raise the rejection as its LedgerError subclass (no-op when applied)."""
        if self.error is not None:
            raise ERRORS_BY_CODE[self.error](f"{self.command!r} rejected")


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Output does not depend on dict insertion order, so two ledgers that
    reached the same state by different paths serialize identically.
    Free-form text (strings, timestamps, reprs) is length-prefixed so that
    separators inside a principal cannot mimic structure.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S{len(value)}:{value}"
    if isinstance(value, datetime):
        stamp = value.isoformat()
        return f"T{len(stamp)}:{stamp}"
    if isinstance(value, Enum):
        return f"E:{type(value).__name__}.{value.name}"
    if isinstance(value, dict):
        items = sorted(
            ((_canonicalize(k), _canonicalize(v)) for k, v in value.items())
        )
        serialized = ",".join(f"{k}:{v}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if is_dataclass(value) and not isinstance(value, type):
        return f"{type(value).__name__}{_canonicalize(asdict(value))}"
    rendered = repr(value)
    return f"R{len(rendered)}:{rendered}"


# ============================================================================
# READ VIEW
# ============================================================================

@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Frozen copy of the complete ledger state at one point in the command log.

    Every map is a private copy taken under the ledger lock, so a snapshot
    never reflects a half-applied command and can be shared freely between
    threads. Implements TokenView.
    """
    total_supply: int
    paused: bool
    admin: Principal
    balances: Dict[Principal, int] = field(default_factory=dict)
    minters: Dict[Principal, bool] = field(default_factory=dict)
    allowances: Dict[AllowanceKey, int] = field(default_factory=dict)
    mint_records: Dict[int, MintRecord] = field(default_factory=dict)
    sequence: int = 0

    def get_name(self) -> str:
        return TOKEN_NAME

    def get_symbol(self) -> str:
        return TOKEN_SYMBOL

    def get_decimals(self) -> int:
        return TOKEN_DECIMALS

    def get_total_supply(self) -> int:
        return self.total_supply

    def get_balance(self, account: Principal) -> int:
        return self.balances.get(account, 0)

    def get_mint_record(self, mint_id: int) -> Optional[MintRecord]:
        return self.mint_records.get(mint_id)

    def is_minter(self, account: Principal) -> bool:
        return self.minters.get(account, False)

    def is_paused(self) -> bool:
        return self.paused

    def get_admin(self) -> Principal:
        return self.admin

    def get_allowance(self, owner: Principal, spender: Principal) -> int:
        return self.allowances.get(AllowanceKey(owner, spender), 0)

    def digest(self) -> str:
        """
        Content hash of the observable state.

        Zero balances and allowances are dropped first: they are
        indistinguishable from absent entries through every query.
        The command-log position is not part of the digest.
        """
        content = _canonicalize({
            "admin": self.admin,
            "paused": self.paused,
            "total_supply": self.total_supply,
            "balances": {a: v for a, v in self.balances.items() if v},
            "minters": dict(self.minters),
            "allowances": {k: v for k, v in self.allowances.items() if v},
            "mint_records": dict(self.mint_records),
        })
        return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def format_amount(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """
    Render a base-unit amount as a fixed-point string.

    Args:
        amount: Integer amount in base units.
        decimals: Number of fractional digits (default: TOKEN_DECIMALS).

    Returns:
        e.g. format_amount(1_500_000) == "1.500000"

    Raises:
        ValueError: If amount is not an int.
    """
    if not _is_amount(amount):
        raise ValueError(f"amount must be int, got {type(amount).__name__}")
    with localcontext() as ctx:
        ctx.prec = len(str(abs(amount))) + decimals + 1
        value = Decimal(amount).scaleb(-decimals)
        return format(value.quantize(Decimal(1).scaleb(-decimals)), 'f')


def parse_amount(text: str, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Parse a fixed-point string into base units.

    Raises:
        ValueError: If text is not a finite, non-negative number or carries
                    more fractional digits than the token supports.
    """
    try:
        value = Decimal(text.strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"Not a decimal amount: {text!r}") from None
    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {text!r}")
    if value < 0:
        raise ValueError(f"Amount must be non-negative, got {text!r}")
    with localcontext() as ctx:
        ctx.prec = len(value.as_tuple().digits) + decimals + 2
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{text!r} has more than {decimals} fractional digits")
        return int(scaled)
