"""Shared constants for Solana AMM pools and farms."""

# Registry pools denote native SOL legs with the system program address.
NATIVE_SOL_MINT = "11111111111111111111111111111111"

SECONDS_PER_DAY = 60 * 60 * 24

# getMultipleAccounts accepts at most this many keys per call.
MAX_MULTIPLE_ACCOUNTS = 100

# Instruction amounts are encoded as u64.
MAX_U64 = 2**64 - 1

__all__ = [
    "MAX_MULTIPLE_ACCOUNTS",
    "MAX_U64",
    "NATIVE_SOL_MINT",
    "SECONDS_PER_DAY",
]
