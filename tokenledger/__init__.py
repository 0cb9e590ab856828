"""
tokenledger - Fungible Token Ledger

A deterministic, in-memory state machine for a divisible token: balances,
authorized minting with audit records, owner and delegated transfers, and
admin controls (pause, admin rotation, minter registry).

Usage:
    from tokenledger import TokenLedger, Command, CommandType, BOOTSTRAP_ADMIN

    ledger = TokenLedger(verbose=False)
    ledger.add_minter(BOOTSTRAP_ADMIN, "station_7")
    ledger.mint("station_7", 1_000_000, "alice", "Recycled 1kg plastic")

    # Owner transfer
    ledger.transfer("alice", 500_000, "alice", "bob")

    # Delegated transfer
    ledger.set_allowance("alice", "carol", 100_000)
    ledger.transfer_from("carol", 100_000, "alice", "carol")

    # Host boundary: results instead of exceptions
    receipt = ledger.execute(Command(CommandType.BURN, "bob", (900_000,)))
    receipt.error   # ErrorCode.INSUFFICIENT_BALANCE
"""

# Core types
from .core import (
    TokenView,
    AllowanceKey,
    MintRecord,
    Command,
    CommandType,
    CommandRecord,
    Receipt,
    ExecuteResult,
    LedgerSnapshot,
    ErrorCode,
    ERRORS_BY_CODE,
    COMMAND_SIGNATURES,
    LedgerError,
    Unauthorized,
    Paused,
    InvalidAmount,
    InvalidRecipient,
    InvalidMinter,
    AlreadyRegistered,
    MetadataTooLong,
    InsufficientBalance,
    InvalidSender,
    format_amount,
    parse_amount,
    TOKEN_NAME,
    TOKEN_SYMBOL,
    TOKEN_DECIMALS,
    MAX_METADATA_LEN,
    BOOTSTRAP_ADMIN,
)

# Ledger
from .ledger import TokenLedger

__all__ = [
    # Core
    'TokenView', 'AllowanceKey', 'MintRecord',
    'Command', 'CommandType', 'CommandRecord', 'Receipt', 'ExecuteResult',
    'LedgerSnapshot', 'COMMAND_SIGNATURES',
    # Errors
    'ErrorCode', 'ERRORS_BY_CODE', 'LedgerError',
    'Unauthorized', 'Paused', 'InvalidAmount', 'InvalidRecipient', 'InvalidMinter',
    'AlreadyRegistered', 'MetadataTooLong', 'InsufficientBalance', 'InvalidSender',
    # Display
    'format_amount', 'parse_amount',
    # Constants
    'TOKEN_NAME', 'TOKEN_SYMBOL', 'TOKEN_DECIMALS', 'MAX_METADATA_LEN', 'BOOTSTRAP_ADMIN',
    # Ledger
    'TokenLedger',
]

__version__ = '1.0.0'
