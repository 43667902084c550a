from __future__ import annotations

import struct
from decimal import Decimal

import pytest
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

from solana_amm_farming.config.settings import ExecutionConfig
from solana_amm_farming.errors import InsufficientBalance, ValidationError
from solana_amm_farming.execution.instructions import ADD_LIQUIDITY_DATA, AMOUNT_DATA
from solana_amm_farming.execution.transaction_builder import (
    FIXED_SIDE_COIN,
    FIXED_SIDE_PC,
    LiquidityTransactionBuilder,
    quote_add_liquidity,
)
from solana_amm_farming.ingestion.onchain import PoolStateLoader

from .fakes import FakeFetcher, make_pool, mint_data, new_address, sol_token, token, token_account_data

SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")
CLOSE_ACCOUNT = 9


def _builder(fetcher: FakeFetcher) -> LiquidityTransactionBuilder:
    return LiquidityTransactionBuilder(fetcher, config=ExecutionConfig())


def _find(plan, program_id):
    return [ix for ix in plan.instructions if ix.program_id == program_id]


def _amm_ix(plan, pool):
    (ix,) = _find(plan, Pubkey.from_string(pool.program_id))
    return ix


def test_from_amount_derives_pc_leg_and_fixes_pc_side():
    pool = make_pool()
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_token_account(owner, pool.coin, "1000")
    fetcher.add_token_account(owner, pool.pc, "500")
    fetcher.add_token_account(owner, pool.lp, "0")

    plan = _builder(fetcher).plan_add_liquidity(pool, owner, from_amount="100")

    data = ADD_LIQUIDITY_DATA.parse(bytes(_amm_ix(plan, pool).data))
    assert data.max_coin_amount == 100_000_000
    assert data.max_pc_amount == 200_000_000
    assert data.fixed_from_coin == FIXED_SIDE_PC
    assert plan.signers == ()
    assert len(plan.instructions) == 1


def test_to_amount_derives_coin_leg_and_fixes_coin_side():
    pool = make_pool()
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_token_account(owner, pool.coin, "1000")
    fetcher.add_token_account(owner, pool.pc, "500")
    fetcher.add_token_account(owner, pool.lp, "0")

    plan = _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="200")

    data = ADD_LIQUIDITY_DATA.parse(bytes(_amm_ix(plan, pool).data))
    assert data.max_coin_amount == 100_000_000
    assert data.max_pc_amount == 200_000_000
    assert data.fixed_from_coin == FIXED_SIDE_COIN


def test_rate_is_quantized_to_pc_decimals():
    pool = make_pool(coin_reserve="3", pc_reserve="1", pc=token("USDC", decimals=2))
    quote = quote_add_liquidity(pool, from_amount="10")
    assert quote.rate == Decimal("0.33")
    assert quote.pc_amount.raw == 330


def test_exactly_one_amount_is_required():
    pool = make_pool()
    builder = _builder(FakeFetcher())
    with pytest.raises(ValidationError):
        builder.plan_add_liquidity(pool, new_address())
    with pytest.raises(ValidationError):
        builder.plan_add_liquidity(pool, new_address(), from_amount="1", to_amount="2")


def test_shortfall_raises_insufficient_balance_without_a_plan():
    pool = make_pool()
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_token_account(owner, pool.coin, "1000")
    fetcher.add_token_account(owner, pool.pc, "50")

    with pytest.raises(InsufficientBalance) as excinfo:
        _builder(fetcher).plan_add_liquidity(pool, owner, from_amount="50")

    assert excinfo.value.existing == Decimal("50")
    assert excinfo.value.required == Decimal("100")
    assert excinfo.value.kind == "insufficient_balance"


def test_missing_spent_account_counts_as_zero_balance():
    pool = make_pool()
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_token_account(owner, pool.pc, "500")
    with pytest.raises(InsufficientBalance) as excinfo:
        _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="10")
    assert excinfo.value.existing == 0


def test_native_leg_is_wrapped_first_and_closed_last():
    pool = make_pool(coin=sol_token(), coin_reserve="1000", pc_reserve="20000")
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.native_balances[owner] = 5_000_000_000
    fetcher.add_token_account(owner, pool.pc, "100")

    plan = _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="40")

    (wrapped,) = plan.signer_pubkeys()
    create = plan.instructions[0]
    assert create.program_id == SYSTEM_PROGRAM
    _, lamports, space = struct.unpack("<IQQ", bytes(create.data)[:20])
    assert lamports == 2_000_000_000 + 10_000_000
    assert space == 165
    assert plan.instructions[1].program_id == TOKEN_PROGRAM_ID
    assert plan.instructions[2].program_id == ASSOCIATED_TOKEN_PROGRAM_ID

    amm_index = plan.instructions.index(_amm_ix(plan, pool))
    close = plan.instructions[-1]
    assert amm_index == len(plan.instructions) - 2
    assert close.program_id == TOKEN_PROGRAM_ID
    assert bytes(close.data)[0] == CLOSE_ACCOUNT
    assert close.accounts[0].pubkey == wrapped
    assert _amm_ix(plan, pool).accounts[9].pubkey == wrapped


def test_native_balance_is_checked_in_lamports():
    pool = make_pool(coin=sol_token(), coin_reserve="1000", pc_reserve="20000")
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.native_balances[owner] = 1_000_000_000
    fetcher.add_token_account(owner, pool.pc, "100")
    with pytest.raises(InsufficientBalance) as excinfo:
        _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="40")
    assert excinfo.value.existing == Decimal("1")
    assert excinfo.value.required == Decimal("2.01")


def test_native_balance_must_cover_wrapped_account_funding():
    pool = make_pool(coin=sol_token(), coin_reserve="1000", pc_reserve="20000")
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.native_balances[owner] = 2_005_000_000
    fetcher.add_token_account(owner, pool.pc, "100")
    with pytest.raises(InsufficientBalance) as excinfo:
        _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="40")
    assert excinfo.value.required == Decimal("2.01")

    fetcher.native_balances[owner] = 2_010_000_000
    assert _builder(fetcher).plan_add_liquidity(pool, owner, to_amount="40").signer_pubkeys()


def test_missing_snapshot_is_refreshed_through_the_loader():
    pool = make_pool(coin_reserve=None)
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_account(pool.pool_coin_token_account, "vault", token_account_data(pool.coin.mint, owner, 1_000_000_000))
    fetcher.add_account(pool.pool_pc_token_account, "vault", token_account_data(pool.pc.mint, owner, 2_000_000_000))
    fetcher.add_account(pool.lp.mint, "mint", mint_data(500_000_000, 6))
    fetcher.add_token_account(owner, pool.coin, "1000")
    fetcher.add_token_account(owner, pool.pc, "500")

    builder = LiquidityTransactionBuilder(fetcher, config=ExecutionConfig(), pool_loader=PoolStateLoader(fetcher))
    plan = builder.plan_add_liquidity(pool, owner, from_amount="1")

    data = ADD_LIQUIDITY_DATA.parse(bytes(_amm_ix(plan, pool).data))
    assert data.max_pc_amount == 2_000_000
    assert len(fetcher.multiple_account_calls) == 1


def test_remove_liquidity_wraps_native_leg_with_rent_minimum():
    pool = make_pool(coin=sol_token(), version=4)
    owner = new_address()
    fetcher = FakeFetcher()
    lp_account = fetcher.add_token_account(owner, pool.lp, "10")
    pc_account = fetcher.add_token_account(owner, pool.pc, "0")

    plan = _builder(fetcher).plan_remove_liquidity(pool, owner, "2.5")

    _, lamports, _ = struct.unpack("<IQQ", bytes(plan.instructions[0].data)[:20])
    assert lamports == fetcher.rent
    amm_ix = _amm_ix(plan, pool)
    assert AMOUNT_DATA.parse(bytes(amm_ix.data)).amount == 2_500_000
    keys = [str(meta.pubkey) for meta in amm_ix.accounts]
    assert keys[15] == lp_account
    assert keys[16] == str(plan.signer_pubkeys()[0])
    assert keys[17] == pc_account
    assert bytes(plan.instructions[-1].data)[0] == CLOSE_ACCOUNT


def test_remove_liquidity_creates_missing_destination_accounts():
    pool = make_pool(version=3)
    owner = new_address()
    fetcher = FakeFetcher()
    fetcher.add_token_account(owner, pool.lp, "1")

    plan = _builder(fetcher).plan_remove_liquidity(pool, owner, "1")

    assert [ix.program_id for ix in plan.instructions[:2]] == [ASSOCIATED_TOKEN_PROGRAM_ID] * 2
    assert plan.signers == ()


def test_remove_liquidity_checks_lp_account_and_balance():
    pool = make_pool()
    owner = new_address()
    fetcher = FakeFetcher()
    with pytest.raises(ValidationError):
        _builder(fetcher).plan_remove_liquidity(pool, owner, "1")
    fetcher.add_token_account(owner, pool.lp, "1")
    with pytest.raises(InsufficientBalance):
        _builder(fetcher).plan_remove_liquidity(pool, owner, "1.5")
