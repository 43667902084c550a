"""Command line front-end for the AMM liquidity and farming toolkit."""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
import uuid
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .analytics.yield_engine import YieldAnalyticsEngine
from .config.settings import AppConfig, get_app_config
from .datalake.schemas import PoolMarketData
from .errors import FarmKitError, ValidationError
from .execution.plan import TransactionPlan
from .execution.solana_client import SolanaTransactionSubmitter
from .execution.stake_builder import ProgramFamily, StakeAction, StakeTransactionBuilder
from .execution.transaction_builder import LiquidityTransactionBuilder
from .execution.wallet import load_wallet
from .ingestion.onchain import FarmStateLoader, PoolStateLoader, SolanaAccountFetcher
from .ingestion.registry import PoolRegistry, load_registry
from .monitoring import bootstrap_observability, correlation_scope, log_context
from .monitoring.logger import get_logger

logger = get_logger(__name__)


def _json_default(value):
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _emit(payload) -> None:
    if dataclasses.is_dataclass(payload):
        payload = dataclasses.asdict(payload)
    print(json.dumps(payload, indent=2, default=_json_default))


def parse_prices(entries: Sequence[str], prices_file: Optional[Path] = None) -> Dict[str, float]:
    """Merge ``SYMBOL=PRICE`` arguments over an optional JSON price file."""

    prices: Dict[str, float] = {}
    if prices_file is not None:
        with Path(prices_file).open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, dict):
            raise ValidationError(f"{prices_file} must hold a JSON object of symbol prices")
        prices.update({str(symbol): float(price) for symbol, price in payload.items()})
    for entry in entries:
        symbol, sep, value = entry.partition("=")
        if not sep or not symbol:
            raise ValidationError(f"price {entry!r} is not SYMBOL=PRICE")
        try:
            prices[symbol.strip()] = float(value)
        except ValueError as exc:
            raise ValidationError(f"price {entry!r} is not a number") from exc
    return prices


def parse_market(entries: Sequence[str]) -> Dict[str, PoolMarketData]:
    """Parse ``LP_MINT=FEE_APY:TVL`` arguments."""

    market: Dict[str, PoolMarketData] = {}
    for entry in entries:
        mint, sep, figures = entry.partition("=")
        fee_apy, _, tvl = figures.partition(":")
        if not sep or not mint:
            raise ValidationError(f"market entry {entry!r} is not LP_MINT=FEE_APY:TVL")
        try:
            market[mint] = PoolMarketData(
                fee_apy=float(fee_apy) if fee_apy else None,
                tvl=float(tvl) if tvl else None,
            )
        except ValueError as exc:
            raise ValidationError(f"market entry {entry!r} is not numeric") from exc
    return market


def _plan_summary(plan: TransactionPlan) -> Dict[str, object]:
    return {
        "description": plan.description,
        "payer": str(plan.payer),
        "instructions": [str(program_id) for program_id in plan.program_ids()],
        "signers": [str(key) for key in plan.signer_pubkeys()],
    }


def _finish_plan(plan: TransactionPlan, args: argparse.Namespace, config: AppConfig, wallet) -> None:
    if not args.submit:
        _emit(_plan_summary(plan))
        return
    result = SolanaTransactionSubmitter(config).submit(plan, [wallet.keypair], timeout=args.timeout)
    _emit({"signature": result.signature, "attempts": result.attempts})


def cmd_pools(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
    fetcher = SolanaAccountFetcher(config.rpc)
    registry = registry.with_pools(PoolStateLoader(fetcher).refresh(registry.pools))
    batch = FarmStateLoader(fetcher).load(registry.farms)
    prices = parse_prices(args.price, args.prices_file)
    report = YieldAnalyticsEngine(registry, config.analytics).evaluate_batch(batch, prices, parse_market(args.market))
    if args.status == "all":
        _emit(report)
    else:
        _emit({args.status: [dataclasses.asdict(record) for record in getattr(report, args.status)]})


def cmd_search(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
    _emit(registry.search(from_name=args.name, from_lp=args.lp, from_reward=args.reward))


def cmd_stake_account(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
    _emit(FarmStateLoader(SolanaAccountFetcher(config.rpc)).stake_account(args.address))


def cmd_add_liquidity(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
    wallet = load_wallet(config.wallet)
    fetcher = SolanaAccountFetcher(config.rpc)
    pool = PoolStateLoader(fetcher).refresh_one(registry.pool(args.pool, args.version))
    builder = LiquidityTransactionBuilder(fetcher, config=config.execution)
    plan = builder.plan_add_liquidity(pool, wallet.public_key, from_amount=args.from_amount, to_amount=args.to_amount)
    _finish_plan(plan, args, config, wallet)


def cmd_remove_liquidity(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
    wallet = load_wallet(config.wallet)
    fetcher = SolanaAccountFetcher(config.rpc)
    builder = LiquidityTransactionBuilder(fetcher, config=config.execution)
    plan = builder.plan_remove_liquidity(registry.pool(args.pool, args.version), wallet.public_key, args.lp_amount)
    _finish_plan(plan, args, config, wallet)


def _cmd_stake_action(action: StakeAction):
    def handler(args: argparse.Namespace, config: AppConfig, registry: PoolRegistry) -> None:
        wallet = load_wallet(config.wallet)
        builder = StakeTransactionBuilder(SolanaAccountFetcher(config.rpc), registry, programs=config.programs)
        family = ProgramFamily.FUSION if args.farm else ProgramFamily.SINGLE_ASSET
        plan = builder.plan_stake_action(
            action,
            family,
            wallet.public_key,
            getattr(args, "amount", 0),
            farm_name=args.farm,
            farm_version=args.version,
        )
        _finish_plan(plan, args, config, wallet)

    return handler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Raydium AMM liquidity and farming toolkit")
    parser.add_argument("--catalog", type=Path, default=None, help="Override registry.catalog_path")
    sub = parser.add_subparsers(dest="command", required=True)

    pools = sub.add_parser("pools", help="Compute APR/TVL for every catalogued farm")
    pools.add_argument("--price", action="append", default=[], metavar="SYMBOL=PRICE")
    pools.add_argument("--prices-file", type=Path, default=None)
    pools.add_argument("--market", action="append", default=[], metavar="LP_MINT=FEE_APY:TVL")
    pools.add_argument("--status", choices=("active", "ended", "all"), default="active")
    pools.set_defaults(handler=cmd_pools)

    search = sub.add_parser("search", help="Find farms by name, LP symbol or reward symbol")
    search.add_argument("--name")
    search.add_argument("--lp")
    search.add_argument("--reward")
    search.set_defaults(handler=cmd_search)

    stake_account = sub.add_parser("stake-account", help="Decode a farm state account")
    stake_account.add_argument("address")
    stake_account.set_defaults(handler=cmd_stake_account)

    def with_submit(command: argparse.ArgumentParser) -> argparse.ArgumentParser:
        command.add_argument("--submit", action="store_true", default=False, help="Sign and send the plan")
        command.add_argument(
            "--timeout", type=float, default=None, help="Seconds to wait for confirmation (default from config)"
        )
        return command

    add = with_submit(sub.add_parser("add-liquidity", help="Deposit into an AMM pool"))
    add.add_argument("pool")
    add.add_argument("version", type=int)
    amounts = add.add_mutually_exclusive_group(required=True)
    amounts.add_argument("--from-amount", help="Coin amount; the pc leg is derived")
    amounts.add_argument("--to-amount", help="Pc amount; the coin leg is derived")
    add.set_defaults(handler=cmd_add_liquidity)

    remove = with_submit(sub.add_parser("remove-liquidity", help="Withdraw from an AMM pool"))
    remove.add_argument("pool")
    remove.add_argument("version", type=int)
    remove.add_argument("lp_amount")
    remove.set_defaults(handler=cmd_remove_liquidity)

    for action in StakeAction:
        command = with_submit(sub.add_parser(action.value, help=f"{action.value.capitalize()} on a farm"))
        if action is not StakeAction.HARVEST:
            command.add_argument("amount")
        command.add_argument("--farm", help="Fusion farm name; the default single-asset farm when omitted")
        command.add_argument("--version", type=int, default=None)
        command.set_defaults(handler=_cmd_stake_action(action))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_app_config()
    if args.catalog is not None:
        config = config.model_copy(
            update={"registry": config.registry.model_copy(update={"catalog_path": args.catalog})}
        )
    bootstrap_observability(config=config)
    with correlation_scope(uuid.uuid4().hex[:12]), log_context(command=args.command):
        try:
            registry = load_registry(config)
            args.handler(args, config, registry)
        except FarmKitError as exc:
            logger.error("%s failed: %s", args.command, exc)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
