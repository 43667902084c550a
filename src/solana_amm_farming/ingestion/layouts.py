"""Binary layouts of the farming program accounts.

Integers are little-endian; public keys are raw 32 byte strings.  A change in a
deployed program's account schema needs a new layout here, never an edit of an
existing one.
"""

from __future__ import annotations

from construct import Bytes, BytesInteger, Int8ul, Int32ul, Int64ul, Padding, Struct

PublicKeyBytes = Bytes(32)
U128 = BytesInteger(16, swapped=True)

# Single reward farms owned by the V3 stake program.
STAKE_INFO_LAYOUT = Struct(
    "state" / Int64ul,
    "nonce" / Int64ul,
    "pool_lp_token_account" / PublicKeyBytes,
    "pool_reward_token_account" / PublicKeyBytes,
    "owner" / PublicKeyBytes,
    "fee_owner" / PublicKeyBytes,
    "fee_y" / Int64ul,
    "fee_x" / Int64ul,
    "total_reward" / Int64ul,
    "reward_per_share_net" / U128,
    "last_block" / Int64ul,
    "reward_per_block" / Int64ul,
)

# Dual reward (fusion) farms owned by the V4 and V5 stake programs.
STAKE_INFO_LAYOUT_V4 = Struct(
    "state" / Int64ul,
    "nonce" / Int64ul,
    "pool_lp_token_account" / PublicKeyBytes,
    "pool_reward_token_account" / PublicKeyBytes,
    "total_reward" / Int64ul,
    "per_share" / U128,
    "per_block" / Int64ul,
    "option" / Int8ul,
    "pool_reward_token_account_b" / PublicKeyBytes,
    Padding(7),
    "total_reward_b" / Int64ul,
    "per_share_b" / U128,
    "per_block_b" / Int64ul,
    "last_block" / Int64ul,
    "owner" / PublicKeyBytes,
)

USER_STAKE_INFO_LAYOUT = Struct(
    "state" / Int64ul,
    "pool_id" / PublicKeyBytes,
    "staker_owner" / PublicKeyBytes,
    "deposit_balance" / Int64ul,
    "reward_debt" / Int64ul,
)

USER_STAKE_INFO_LAYOUT_V4 = Struct(
    "state" / Int64ul,
    "pool_id" / PublicKeyBytes,
    "staker_owner" / PublicKeyBytes,
    "deposit_balance" / Int64ul,
    "reward_debt" / Int64ul,
    "reward_debt_b" / Int64ul,
)

# Offset of ``staker_owner`` used to filter getProgramAccounts by owner.
USER_STAKE_OWNER_OFFSET = 40

# SPL token program accounts read for pool vault balances and LP supply.
TOKEN_ACCOUNT_LAYOUT = Struct(
    "mint" / PublicKeyBytes,
    "owner" / PublicKeyBytes,
    "amount" / Int64ul,
    "delegate_option" / Int32ul,
    "delegate" / PublicKeyBytes,
    "state" / Int8ul,
    "is_native_option" / Int32ul,
    "is_native" / Int64ul,
    "delegated_amount" / Int64ul,
    "close_authority_option" / Int32ul,
    "close_authority" / PublicKeyBytes,
)

MINT_LAYOUT = Struct(
    "mint_authority_option" / Int32ul,
    "mint_authority" / PublicKeyBytes,
    "supply" / Int64ul,
    "decimals" / Int8ul,
    "is_initialized" / Int8ul,
    "freeze_authority_option" / Int32ul,
    "freeze_authority" / PublicKeyBytes,
)

__all__ = [
    "MINT_LAYOUT",
    "TOKEN_ACCOUNT_LAYOUT",
    "STAKE_INFO_LAYOUT",
    "STAKE_INFO_LAYOUT_V4",
    "USER_STAKE_INFO_LAYOUT",
    "USER_STAKE_INFO_LAYOUT_V4",
    "USER_STAKE_OWNER_OFFSET",
]
