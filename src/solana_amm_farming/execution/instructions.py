"""Instruction encoders for the AMM and farm programs plus SPL token helpers.

Every encoder dispatches on :class:`InstructionFamily`, the single partition
derived from a pool's or farm's version tag.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple, Union

from construct import Int8ul, Int64ul, Struct
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.sysvar import CLOCK
from spl.token.constants import ACCOUNT_LEN, TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import (
    CloseAccountParams,
    InitializeAccountParams,
    close_account,
    create_associated_token_account,
    get_associated_token_address,
    initialize_account,
)

from ..datalake.schemas import Farm, InstructionFamily, Pool
from ..errors import ValidationError

Address = Union[str, Pubkey]

ADD_LIQUIDITY_TAG = 3
REMOVE_LIQUIDITY_TAG = 4
DEPOSIT_TAG = 1
WITHDRAW_TAG = 2

ADD_LIQUIDITY_DATA = Struct(
    "instruction" / Int8ul,
    "max_coin_amount" / Int64ul,
    "max_pc_amount" / Int64ul,
    "fixed_from_coin" / Int64ul,
)
AMOUNT_DATA = Struct(
    "instruction" / Int8ul,
    "amount" / Int64ul,
)


def to_pubkey(address: Address) -> Pubkey:
    if isinstance(address, Pubkey):
        return address
    return Pubkey.from_string(address)


def _meta(address: Address, *, writable: bool = False, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=to_pubkey(address), is_signer=signer, is_writable=writable)


def _amm_order_account(pool: Pool) -> str:
    if pool.family is InstructionFamily.V4:
        account = pool.amm_target_orders
    else:
        account = pool.amm_quantities
    if not account:
        raise ValidationError(f"pool {pool.name} v{pool.version} has no {pool.family.value} order account")
    return account


def add_liquidity_instruction(
    pool: Pool,
    *,
    user_coin: Address,
    user_pc: Address,
    user_lp: Address,
    owner: Address,
    max_coin_amount: int,
    max_pc_amount: int,
    fixed_from_coin: int,
) -> Instruction:
    """AMM deposit: the V3 family passes amm quantities where V4 passes target orders."""

    accounts = [
        _meta(TOKEN_PROGRAM_ID),
        _meta(pool.amm_id, writable=True),
        _meta(pool.amm_authority),
        _meta(pool.amm_open_orders),
        _meta(_amm_order_account(pool), writable=True),
        _meta(pool.lp.mint, writable=True),
        _meta(pool.pool_coin_token_account, writable=True),
        _meta(pool.pool_pc_token_account, writable=True),
        _meta(pool.serum_market),
        _meta(user_coin, writable=True),
        _meta(user_pc, writable=True),
        _meta(user_lp, writable=True),
        _meta(owner, signer=True),
    ]
    data = ADD_LIQUIDITY_DATA.build(
        {
            "instruction": ADD_LIQUIDITY_TAG,
            "max_coin_amount": max_coin_amount,
            "max_pc_amount": max_pc_amount,
            "fixed_from_coin": fixed_from_coin,
        }
    )
    return Instruction(program_id=to_pubkey(pool.program_id), data=data, accounts=accounts)


def remove_liquidity_instruction(
    pool: Pool,
    *,
    user_lp: Address,
    user_coin: Address,
    user_pc: Address,
    owner: Address,
    amount: int,
) -> Instruction:
    accounts = [
        _meta(TOKEN_PROGRAM_ID),
        _meta(pool.amm_id, writable=True),
        _meta(pool.amm_authority),
        _meta(pool.amm_open_orders, writable=True),
        _meta(_amm_order_account(pool), writable=True),
        _meta(pool.lp.mint, writable=True),
        _meta(pool.pool_coin_token_account, writable=True),
        _meta(pool.pool_pc_token_account, writable=True),
        _meta(pool.pool_withdraw_queue, writable=True),
        _meta(pool.pool_temp_lp_token_account, writable=True),
        _meta(pool.serum_program_id),
        _meta(pool.serum_market, writable=True),
        _meta(pool.serum_coin_vault_account, writable=True),
        _meta(pool.serum_pc_vault_account, writable=True),
        _meta(pool.serum_vault_signer),
        _meta(user_lp, writable=True),
        _meta(user_coin, writable=True),
        _meta(user_pc, writable=True),
        _meta(owner, signer=True),
    ]
    data = AMOUNT_DATA.build({"instruction": REMOVE_LIQUIDITY_TAG, "amount": amount})
    return Instruction(program_id=to_pubkey(pool.program_id), data=data, accounts=accounts)


def _stake_accounts_v3(
    farm: Farm,
    user_info: Address,
    owner: Address,
    user_lp: Address,
    user_reward: Address,
    user_reward_b: Optional[Address],
) -> List[AccountMeta]:
    return [
        _meta(farm.pool_id, writable=True),
        _meta(farm.pool_authority),
        _meta(user_info, writable=True),
        _meta(owner, signer=True),
        _meta(user_lp, writable=True),
        _meta(farm.pool_lp_token_account, writable=True),
        _meta(user_reward, writable=True),
        _meta(farm.pool_reward_token_account, writable=True),
        _meta(CLOCK),
        _meta(TOKEN_PROGRAM_ID),
    ]


def _stake_accounts_v4(
    farm: Farm,
    user_info: Address,
    owner: Address,
    user_lp: Address,
    user_reward: Address,
    user_reward_b: Optional[Address],
) -> List[AccountMeta]:
    if user_reward_b is None or not farm.pool_reward_token_account_b:
        raise ValidationError(f"farm {farm.name} v{farm.version} needs a second reward account")
    return [
        _meta(farm.pool_id, writable=True),
        _meta(farm.pool_authority),
        _meta(user_info, writable=True),
        _meta(owner, signer=True),
        _meta(user_lp, writable=True),
        _meta(farm.pool_lp_token_account, writable=True),
        _meta(user_reward, writable=True),
        _meta(farm.pool_reward_token_account, writable=True),
        _meta(user_reward_b, writable=True),
        _meta(farm.pool_reward_token_account_b, writable=True),
        _meta(CLOCK),
        _meta(TOKEN_PROGRAM_ID),
    ]


_STAKE_ACCOUNT_ENCODERS: Dict[InstructionFamily, Callable[..., List[AccountMeta]]] = {
    InstructionFamily.V3: _stake_accounts_v3,
    InstructionFamily.V4: _stake_accounts_v4,
}


def _stake_instruction(
    tag: int,
    farm: Farm,
    *,
    user_info: Address,
    owner: Address,
    user_lp: Address,
    user_reward: Address,
    user_reward_b: Optional[Address],
    amount: int,
) -> Instruction:
    encoder = _STAKE_ACCOUNT_ENCODERS[farm.family]
    accounts = encoder(farm, user_info, owner, user_lp, user_reward, user_reward_b)
    data = AMOUNT_DATA.build({"instruction": tag, "amount": amount})
    return Instruction(program_id=to_pubkey(farm.program_id), data=data, accounts=accounts)


def deposit_instruction(
    farm: Farm,
    *,
    user_info: Address,
    owner: Address,
    user_lp: Address,
    user_reward: Address,
    user_reward_b: Optional[Address] = None,
    amount: int,
) -> Instruction:
    """Stake ``amount`` LP into ``farm``; an amount of zero only harvests."""

    return _stake_instruction(
        DEPOSIT_TAG,
        farm,
        user_info=user_info,
        owner=owner,
        user_lp=user_lp,
        user_reward=user_reward,
        user_reward_b=user_reward_b,
        amount=amount,
    )


def withdraw_instruction(
    farm: Farm,
    *,
    user_info: Address,
    owner: Address,
    user_lp: Address,
    user_reward: Address,
    user_reward_b: Optional[Address] = None,
    amount: int,
) -> Instruction:
    return _stake_instruction(
        WITHDRAW_TAG,
        farm,
        user_info=user_info,
        owner=owner,
        user_lp=user_lp,
        user_reward=user_reward,
        user_reward_b=user_reward_b,
        amount=amount,
    )


def create_program_account(
    payer: Address,
    account: Address,
    *,
    lamports: int,
    space: int,
    program_id: Address,
) -> Instruction:
    return create_account(
        CreateAccountParams(
            from_pubkey=to_pubkey(payer),
            to_pubkey=to_pubkey(account),
            lamports=lamports,
            space=space,
            owner=to_pubkey(program_id),
        )
    )


def wrapped_sol_account_instructions(payer: Address, account: Address, lamports: int) -> List[Instruction]:
    """Create a token account for wrapped SOL funded with ``lamports`` and initialize it."""

    return [
        create_program_account(payer, account, lamports=lamports, space=ACCOUNT_LEN, program_id=TOKEN_PROGRAM_ID),
        initialize_account(
            InitializeAccountParams(
                program_id=TOKEN_PROGRAM_ID,
                account=to_pubkey(account),
                mint=WRAPPED_SOL_MINT,
                owner=to_pubkey(payer),
            )
        ),
    ]


def close_token_account_instruction(account: Address, owner: Address) -> Instruction:
    """Close ``account`` and return its lamports to ``owner``."""

    return close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=to_pubkey(account),
            dest=to_pubkey(owner),
            owner=to_pubkey(owner),
        )
    )


def associated_token_account_instruction(payer: Address, owner: Address, mint: Address) -> Tuple[Pubkey, Instruction]:
    owner_key = to_pubkey(owner)
    mint_key = to_pubkey(mint)
    address = get_associated_token_address(owner_key, mint_key)
    return address, create_associated_token_account(to_pubkey(payer), owner_key, mint_key)


__all__ = [
    "ACCOUNT_LEN",
    "ADD_LIQUIDITY_DATA",
    "AMOUNT_DATA",
    "InstructionFamily",
    "add_liquidity_instruction",
    "associated_token_account_instruction",
    "close_token_account_instruction",
    "create_program_account",
    "deposit_instruction",
    "remove_liquidity_instruction",
    "to_pubkey",
    "withdraw_instruction",
    "wrapped_sol_account_instructions",
]
