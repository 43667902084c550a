"""APR/TVL analytics over decoded farm states.

The pipeline is decode → join → derive → classify. Decoding happens in
:class:`~solana_amm_farming.ingestion.onchain.FarmStateLoader`; this module
joins each farm state with the registry and caller-supplied prices and
derives a :class:`PoolYieldRecord` per farm.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import List, Mapping, Optional, Sequence, Union

from ..config.settings import AnalyticsConfig, get_app_config
from ..datalake.schemas import (
    Farm,
    FarmStateBatch,
    Pool,
    PoolMarketData,
    PoolYieldRecord,
    PoolYieldReport,
    RecordFailure,
    StakeAccountInfo,
    YieldStatus,
)
from ..errors import FarmKitError, FarmNotFound, PoolNotFound, ValidationError, YieldArithmeticError
from ..ingestion.registry import PoolRegistry
from ..monitoring.logger import get_logger, log_context
from ..monitoring.metrics import METRICS
from ..utils.amounts import TokenAmount
from ..utils.constants import SECONDS_PER_DAY

Outcome = Union[PoolYieldRecord, RecordFailure]


class YieldAnalyticsEngine:
    """Computes yield records for farms; failures are isolated per record."""

    def __init__(self, registry: PoolRegistry, config: Optional[AnalyticsConfig] = None) -> None:
        self._registry = registry
        self._config = config or get_app_config().analytics
        self._logger = get_logger(__name__)

    @property
    def blocks_per_year(self) -> float:
        return self._config.blocks_per_second * SECONDS_PER_DAY * self._config.days_per_year

    def evaluate(
        self,
        states: Sequence[StakeAccountInfo],
        prices: Mapping[str, float],
        market: Optional[Mapping[str, PoolMarketData]] = None,
    ) -> PoolYieldReport:
        market = market or {}
        # each worker runs in a copy of the caller's correlation id and log context
        parent = contextvars.copy_context()
        with METRICS.timer("yield.evaluate_seconds"):
            with ThreadPoolExecutor(max_workers=self._config.max_workers) as executor:
                outcomes: List[Outcome] = list(
                    executor.map(lambda state: parent.copy().run(self._evaluate_one, state, prices, market), states)
                )
        return self._classify(outcomes)

    def evaluate_batch(
        self,
        batch: FarmStateBatch,
        prices: Mapping[str, float],
        market: Optional[Mapping[str, PoolMarketData]] = None,
    ) -> PoolYieldReport:
        report = self.evaluate(batch.states, prices, market)
        return PoolYieldReport(
            active=report.active,
            ended=report.ended,
            failures=tuple(batch.failures) + report.failures,
        )

    def _evaluate_one(
        self,
        state: StakeAccountInfo,
        prices: Mapping[str, float],
        market: Mapping[str, PoolMarketData],
    ) -> Outcome:
        with log_context(farm_state=state.address):
            try:
                return self.compute_record(state, prices, market)
            except FarmKitError as exc:
                METRICS.increment("yield.failures", kind=exc.kind)
                self._logger.debug("Yield evaluation failed: %s", exc)
                return RecordFailure(address=state.address, kind=exc.kind, detail=exc.detail)

    def _classify(self, outcomes: Sequence[Outcome]) -> PoolYieldReport:
        active: List[PoolYieldRecord] = []
        ended: List[PoolYieldRecord] = []
        failures: List[RecordFailure] = []
        for outcome in outcomes:
            if isinstance(outcome, RecordFailure):
                failures.append(outcome)
            elif outcome.status is YieldStatus.ENDED:
                ended.append(outcome)
            else:
                active.append(outcome)
        METRICS.gauge("yield.records", len(active), status=YieldStatus.ACTIVE.value)
        METRICS.gauge("yield.records", len(ended), status=YieldStatus.ENDED.value)
        return PoolYieldReport(active=tuple(active), ended=tuple(ended), failures=tuple(failures))

    def compute_record(
        self,
        state: StakeAccountInfo,
        prices: Mapping[str, float],
        market: Optional[Mapping[str, PoolMarketData]] = None,
    ) -> PoolYieldRecord:
        farm, pool = self._join(state)
        fusion = farm.fusion and farm.reward_b is not None

        reward_price = _price(prices, farm.reward.symbol)
        reward_value = self._reward_value(state.reward_per_block, farm.reward.decimals, reward_price)
        reward_b_price = reward_b_value = None
        if fusion:
            reward_b_price = _price(prices, farm.reward_b.symbol)
            reward_b_value = self._reward_value(state.reward_b_per_block or 0, farm.reward_b.decimals, reward_b_price)

        values = [reward_value] if not fusion else [reward_value, reward_b_value]
        status = YieldStatus.ENDED if all(value == 0 for value in values) else YieldStatus.ACTIVE

        # Both legs are valued at the reward token price.
        reference_price = reward_b_price if fusion else reward_price
        liquidity_value = self._liquidity_value(state, farm, pool, reference_price)
        if liquidity_value == 0:
            if status is not YieldStatus.ENDED:
                raise YieldArithmeticError(f"liquidity value of farm {farm.name} v{farm.version} is zero")
            # drained farm with no rewards left
            apr = 0.0
            apr_b = 0.0 if fusion else None
        else:
            apr = round(reward_value / liquidity_value * 100, 2)
            apr_b = round(reward_b_value / liquidity_value * 100, 2) if fusion else None

        market_data = (market or {}).get(farm.lp.mint)
        fee_apy = market_data.fee_apy if market_data else None
        tvl = market_data.tvl if market_data else None
        return PoolYieldRecord(
            name=farm.name,
            farm_address=state.address,
            pool_version=pool.version,
            farm_version=farm.version,
            reward_symbol=farm.reward.symbol,
            reward_price=reward_price,
            reward_value_per_year=reward_value,
            liquidity_value=liquidity_value,
            apr=apr,
            apr_total=apr + (apr_b or 0.0),
            final_apr=(fee_apy or 0.0) + apr + (apr_b or 0.0),
            status=status,
            dual_yield=bool(apr_b),
            reward_b_symbol=farm.reward_b.symbol if fusion else None,
            reward_b_price=reward_b_price,
            reward_b_value_per_year=reward_b_value,
            apr_b=apr_b,
            fee_apy=fee_apy,
            tvl=tvl,
        )

    def _join(self, state: StakeAccountInfo) -> tuple[Farm, Pool]:
        farm = self._registry.farm_by_address(state.address)
        if farm is None:
            raise FarmNotFound(f"farm state {state.address} is not in the catalog")
        pool = self._registry.pool_by_lp_mint(farm.lp.mint)
        if pool is None:
            raise PoolNotFound(f"no pool issues LP mint {farm.lp.mint} of farm {farm.name}")
        return farm, pool

    def _reward_value(self, per_block: int, decimals: int, price: float) -> float:
        return TokenAmount(per_block, decimals).to_float() * self.blocks_per_year * price

    def _liquidity_value(self, state: StakeAccountInfo, farm: Farm, pool: Pool, price: float) -> float:
        if pool.coin_balance is None or pool.pc_balance is None or pool.lp_total_supply is None:
            raise ValidationError(f"pool {pool.name} v{pool.version} has no balance snapshot")
        if state.deposited_lp is None:
            raise ValidationError(f"farm state {state.address} has no deposited LP amount")
        total_supply = pool.lp_total_supply.to_float()
        if total_supply == 0:
            raise YieldArithmeticError(f"LP supply of {pool.name} v{pool.version} is zero")
        pooled_value = pool.coin_balance.to_float() * price + pool.pc_balance.to_float() * price
        per_lp = pooled_value / total_supply
        return TokenAmount(state.deposited_lp, farm.lp.decimals).to_float() * per_lp


def _price(prices: Mapping[str, float], symbol: str) -> float:
    price = prices.get(symbol)
    if price is None:
        raise ValidationError(f"no price supplied for {symbol}")
    return float(price)


__all__ = ["YieldAnalyticsEngine"]
