"""Builders that translate add/remove liquidity requests into transaction plans."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config.settings import ExecutionConfig, get_app_config
from ..datalake.schemas import Pool, TokenInfo
from ..errors import InsufficientBalance, ValidationError
from ..ingestion.onchain import AccountFetcher, PoolStateLoader
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.amounts import HumanValue, TokenAmount, to_decimal
from .instructions import (
    ACCOUNT_LEN,
    Address,
    add_liquidity_instruction,
    associated_token_account_instruction,
    close_token_account_instruction,
    remove_liquidity_instruction,
    to_pubkey,
    wrapped_sol_account_instructions,
)
from .plan import PlanDraft, TransactionPlan

FIXED_SIDE_COIN = 0
FIXED_SIDE_PC = 1


@dataclass(frozen=True, slots=True)
class LiquidityQuote:
    """Both legs of a deposit after applying the pool price."""

    coin_amount: TokenAmount
    pc_amount: TokenAmount
    rate: Decimal
    fixed_from_coin: int

    @property
    def spent_is_coin(self) -> bool:
        return self.fixed_from_coin == FIXED_SIDE_COIN


def _quantize(value: Decimal, decimals: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def quote_add_liquidity(
    pool: Pool,
    *,
    from_amount: Optional[HumanValue] = None,
    to_amount: Optional[HumanValue] = None,
) -> LiquidityQuote:
    """Derive the missing leg from the pool price.

    ``from_amount`` is in coin units and ``to_amount`` in pc units. The side
    that was not supplied becomes the fixed side of the deposit.
    """

    if (from_amount is None) == (to_amount is None):
        raise ValidationError("provide exactly one of from_amount or to_amount")
    if pool.coin_balance is None or pool.pc_balance is None:
        raise ValidationError(f"pool {pool.name} v{pool.version} has no balance snapshot")
    coin_reserve = pool.coin_balance.to_human()
    pc_reserve = pool.pc_balance.to_human()
    if coin_reserve <= 0 or pc_reserve <= 0:
        raise ValidationError(f"pool {pool.name} v{pool.version} has an empty reserve")

    if from_amount is not None:
        coin_human = to_decimal(from_amount)
        rate = _quantize(pc_reserve / coin_reserve, pool.pc.decimals)
        pc_human = coin_human * rate
        fixed = FIXED_SIDE_PC
    else:
        pc_human = to_decimal(to_amount)
        rate = _quantize(coin_reserve / pc_reserve, pool.pc.decimals)
        coin_human = pc_human * rate
        fixed = FIXED_SIDE_COIN
    if coin_human <= 0 or pc_human <= 0:
        raise ValidationError("liquidity amounts must be positive")
    return LiquidityQuote(
        coin_amount=TokenAmount.from_human(coin_human, pool.coin.decimals),
        pc_amount=TokenAmount.from_human(pc_human, pool.pc.decimals),
        rate=rate,
        fixed_from_coin=fixed,
    )


class LiquidityTransactionBuilder:
    """Constructs add and remove liquidity plans for AMM pools."""

    def __init__(
        self,
        fetcher: AccountFetcher,
        *,
        config: Optional[ExecutionConfig] = None,
        pool_loader: Optional[PoolStateLoader] = None,
    ) -> None:
        self._fetcher = fetcher
        self._config = config or get_app_config().execution
        self._pool_loader = pool_loader
        self._logger = get_logger(__name__)

    def _spendable(self, owner: str, token: TokenInfo) -> TokenAmount:
        if token.is_native:
            return TokenAmount(self._fetcher.get_native_balance(owner), token.decimals)
        account = self._fetcher.find_token_account(owner, token.mint)
        if account is None:
            return TokenAmount.zero(token.decimals)
        return account.amount

    def _deposit_source(self, draft: PlanDraft, owner: str, token: TokenInfo, amount: TokenAmount) -> Pubkey:
        if token.is_native:
            wrapped = Keypair()
            lamports = amount.raw + self._config.wsol_overprovision_lamports
            draft.add(*wrapped_sol_account_instructions(draft.payer, wrapped.pubkey(), lamports))
            draft.add_signer(wrapped)
            draft.add_cleanup(close_token_account_instruction(wrapped.pubkey(), draft.payer))
            return wrapped.pubkey()
        account = self._fetcher.find_token_account(owner, token.mint)
        if account is None:
            raise ValidationError(f"owner {owner} has no token account for {token.symbol}")
        return to_pubkey(account.address)

    def _destination(self, draft: PlanDraft, owner: str, token: TokenInfo) -> Pubkey:
        if token.is_native:
            rent = self._fetcher.get_rent_exempt_lamports(ACCOUNT_LEN)
            wrapped = Keypair()
            draft.add(*wrapped_sol_account_instructions(draft.payer, wrapped.pubkey(), rent))
            draft.add_signer(wrapped)
            draft.add_cleanup(close_token_account_instruction(wrapped.pubkey(), draft.payer))
            return wrapped.pubkey()
        account = self._fetcher.find_token_account(owner, token.mint)
        if account is not None:
            return to_pubkey(account.address)
        address, instruction = associated_token_account_instruction(draft.payer, draft.payer, token.mint)
        draft.add(instruction)
        return address

    def _with_snapshot(self, pool: Pool) -> Pool:
        if pool.coin_balance is not None and pool.pc_balance is not None:
            return pool
        if self._pool_loader is None:
            return pool
        return self._pool_loader.refresh_one(pool)

    def plan_add_liquidity(
        self,
        pool: Pool,
        owner: Address,
        from_amount: Optional[HumanValue] = None,
        to_amount: Optional[HumanValue] = None,
    ) -> TransactionPlan:
        owner_key = to_pubkey(owner)
        owner_str = str(owner_key)
        pool = self._with_snapshot(pool)
        quote = quote_add_liquidity(pool, from_amount=from_amount, to_amount=to_amount)

        spent_token = pool.coin if quote.spent_is_coin else pool.pc
        required = quote.coin_amount if quote.spent_is_coin else quote.pc_amount
        if spent_token.is_native:
            # the wrapped account is funded above the deposit itself
            required = TokenAmount(required.raw + self._config.wsol_overprovision_lamports, required.decimals)
        existing = self._spendable(owner_str, spent_token)
        if existing.raw < required.raw:
            METRICS.increment("plans.rejected", reason="insufficient_balance")
            raise InsufficientBalance(existing.to_human(), required.to_human(), mint=spent_token.mint)

        draft = PlanDraft(payer=owner_key, description=f"add liquidity {pool.name} v{pool.version}")
        user_coin = self._deposit_source(draft, owner_str, pool.coin, quote.coin_amount)
        user_pc = self._deposit_source(draft, owner_str, pool.pc, quote.pc_amount)
        user_lp = self._destination(draft, owner_str, pool.lp)
        draft.add(
            add_liquidity_instruction(
                pool,
                user_coin=user_coin,
                user_pc=user_pc,
                user_lp=user_lp,
                owner=owner_key,
                max_coin_amount=quote.coin_amount.raw,
                max_pc_amount=quote.pc_amount.raw,
                fixed_from_coin=quote.fixed_from_coin,
            )
        )
        plan = draft.freeze()
        METRICS.increment("plans.built", action="add_liquidity", family=pool.family.value)
        self._logger.info(
            "Planned add liquidity %s v%s: coin=%s pc=%s fixed=%s",
            pool.name,
            pool.version,
            quote.coin_amount,
            quote.pc_amount,
            quote.fixed_from_coin,
        )
        return plan

    def plan_remove_liquidity(self, pool: Pool, owner: Address, lp_amount: HumanValue) -> TransactionPlan:
        owner_key = to_pubkey(owner)
        owner_str = str(owner_key)
        amount = TokenAmount.from_human(lp_amount, pool.lp.decimals)
        if amount.is_zero():
            raise ValidationError("lp_amount must be positive")
        lp_account = self._fetcher.find_token_account(owner_str, pool.lp.mint)
        if lp_account is None:
            raise ValidationError(f"owner {owner_str} has no {pool.lp.symbol} LP token account")
        if lp_account.amount.raw < amount.raw:
            METRICS.increment("plans.rejected", reason="insufficient_balance")
            raise InsufficientBalance(lp_account.amount.to_human(), amount.to_human(), mint=pool.lp.mint)

        draft = PlanDraft(payer=owner_key, description=f"remove liquidity {pool.name} v{pool.version}")
        user_coin = self._destination(draft, owner_str, pool.coin)
        user_pc = self._destination(draft, owner_str, pool.pc)
        draft.add(
            remove_liquidity_instruction(
                pool,
                user_lp=lp_account.address,
                user_coin=user_coin,
                user_pc=user_pc,
                owner=owner_key,
                amount=amount.raw,
            )
        )
        plan = draft.freeze()
        METRICS.increment("plans.built", action="remove_liquidity", family=pool.family.value)
        self._logger.info("Planned remove liquidity %s v%s: lp=%s", pool.name, pool.version, amount)
        return plan


__all__ = [
    "FIXED_SIDE_COIN",
    "FIXED_SIDE_PC",
    "LiquidityQuote",
    "LiquidityTransactionBuilder",
    "quote_add_liquidity",
]
