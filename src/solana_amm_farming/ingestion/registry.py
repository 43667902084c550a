"""Read-only catalog of tokens, AMM pools and farms.

The catalog is loaded once (usually from ``config/catalog.toml``) and never
mutated; refreshed pool snapshots produce a new registry via
:meth:`PoolRegistry.with_pools`.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from ..config.settings import AppConfig, ProgramConfig, get_app_config
from ..datalake.schemas import Farm, InstructionFamily, Pool, TokenInfo
from ..errors import FarmNotFound, PoolNotFound, ValidationError
from ..monitoring.logger import get_logger

_POOL_ADDRESS_FIELDS = (
    "program_id",
    "amm_id",
    "amm_authority",
    "amm_open_orders",
    "pool_coin_token_account",
    "pool_pc_token_account",
    "pool_withdraw_queue",
    "pool_temp_lp_token_account",
    "serum_program_id",
    "serum_market",
    "serum_coin_vault_account",
    "serum_pc_vault_account",
    "serum_vault_signer",
)

_FARM_ADDRESS_FIELDS = (
    "program_id",
    "pool_id",
    "pool_authority",
    "pool_lp_token_account",
    "pool_reward_token_account",
)


@dataclass(frozen=True, slots=True)
class FarmSearchResult:
    """Matches of :meth:`PoolRegistry.search`, one slot per criterion."""

    by_name: Optional[Farm] = None
    by_lp: Optional[Farm] = None
    lp_token: Optional[TokenInfo] = None
    by_reward: Optional[Farm] = None


class PoolRegistry:
    """Immutable lookup tables over the static catalog."""

    def __init__(
        self,
        *,
        tokens: Iterable[TokenInfo] = (),
        lp_tokens: Iterable[TokenInfo] = (),
        pools: Iterable[Pool] = (),
        farms: Iterable[Farm] = (),
    ) -> None:
        self._tokens = MappingProxyType({token.symbol: token for token in tokens})
        self._lp_tokens = MappingProxyType({token.symbol: token for token in lp_tokens})
        self._pools: Tuple[Pool, ...] = tuple(pools)
        self._farms: Tuple[Farm, ...] = tuple(farms)
        self._pool_index = MappingProxyType({(pool.name, pool.version): pool for pool in self._pools})
        self._pool_by_lp = MappingProxyType({pool.lp.mint: pool for pool in self._pools})
        self._farm_index = MappingProxyType({(farm.name, farm.version): farm for farm in self._farms})
        self._farm_by_address = MappingProxyType({farm.pool_id: farm for farm in self._farms})

    @property
    def pools(self) -> Tuple[Pool, ...]:
        return self._pools

    @property
    def farms(self) -> Tuple[Farm, ...]:
        return self._farms

    @property
    def tokens(self) -> Mapping[str, TokenInfo]:
        return self._tokens

    def token(self, symbol: str) -> TokenInfo:
        token = self._tokens.get(symbol) or self._lp_tokens.get(symbol)
        if token is None:
            raise ValidationError(f"unknown token symbol {symbol!r}")
        return token

    def pool(self, name: str, version: int) -> Pool:
        pool = self._pool_index.get((name, int(version)))
        if pool is None:
            raise PoolNotFound(f"no pool named {name!r} with version {version}")
        return pool

    def pool_by_lp_mint(self, mint: str) -> Optional[Pool]:
        return self._pool_by_lp.get(mint)

    def farm(self, name: str, version: int) -> Farm:
        farm = self._farm_index.get((name, int(version)))
        if farm is None:
            raise FarmNotFound(f"no farm named {name!r} with version {version}")
        return farm

    def farm_by_address(self, address: str) -> Optional[Farm]:
        return self._farm_by_address.get(address)

    def default_stake_farm(self, programs: Optional[ProgramConfig] = None) -> Farm:
        cfg = programs or get_app_config().programs
        return self.farm(cfg.default_stake_farm, cfg.default_stake_farm_version)

    def search(
        self,
        *,
        from_name: Optional[str] = None,
        from_lp: Optional[str] = None,
        from_reward: Optional[str] = None,
    ) -> FarmSearchResult:
        if from_name and from_lp and from_reward:
            raise ValidationError("search by one criterion at a time (from_name, from_lp, from_reward)")
        by_name = by_lp = by_reward = None
        lp_token = None
        if from_name:
            by_name = next((farm for farm in self._farms if farm.name == from_name), None)
        if from_lp:
            by_lp = next((farm for farm in self._farms if farm.lp.symbol == from_lp), None)
            if by_lp is None:
                lp_token = self._lp_tokens.get(from_lp)
        if from_reward:
            symbol = from_reward.upper()
            by_reward = next((farm for farm in self._farms if farm.reward.symbol == symbol), None)
        return FarmSearchResult(by_name=by_name, by_lp=by_lp, lp_token=lp_token, by_reward=by_reward)

    def with_pools(self, refreshed: Sequence[Pool]) -> "PoolRegistry":
        replacements = {(pool.name, pool.version): pool for pool in refreshed}
        return PoolRegistry(
            tokens=self._tokens.values(),
            lp_tokens=self._lp_tokens.values(),
            pools=[replacements.get((pool.name, pool.version), pool) for pool in self._pools],
            farms=self._farms,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PoolRegistry":
        tokens = [_token_from(entry) for entry in data.get("tokens", [])]
        lp_tokens = [_token_from(entry) for entry in data.get("lp_tokens", [])]
        by_symbol: Dict[str, TokenInfo] = {token.symbol: token for token in tokens}
        by_symbol.update({token.symbol: token for token in lp_tokens})

        def resolve(symbol: Optional[str], context: str) -> TokenInfo:
            if symbol is None:
                raise ValidationError(f"{context}: missing token reference")
            token = by_symbol.get(symbol)
            if token is None:
                raise ValidationError(f"{context}: unknown token {symbol!r}")
            return token

        pools = []
        for entry in data.get("pools", []):
            label = f"pool {entry.get('name')!r}"
            _require(entry, ("name", "version", *_POOL_ADDRESS_FIELDS), label)
            pool = Pool(
                name=entry["name"],
                version=int(entry["version"]),
                lp=resolve(entry.get("lp"), label),
                coin=resolve(entry.get("coin"), label),
                pc=resolve(entry.get("pc"), label),
                amm_target_orders=entry.get("amm_target_orders"),
                amm_quantities=entry.get("amm_quantities"),
                **{name: entry[name] for name in _POOL_ADDRESS_FIELDS},
            )
            if pool.family is InstructionFamily.V4 and not pool.amm_target_orders:
                raise ValidationError(f"{label}: V4 pools need amm_target_orders")
            if pool.family is InstructionFamily.V3 and not pool.amm_quantities:
                raise ValidationError(f"{label}: V3 pools need amm_quantities")
            pools.append(pool)

        farms = []
        for entry in data.get("farms", []):
            label = f"farm {entry.get('name')!r}"
            _require(entry, ("name", "version", *_FARM_ADDRESS_FIELDS), label)
            reward_b = resolve(entry["reward_b"], label) if entry.get("reward_b") else None
            farm = Farm(
                name=entry["name"],
                version=int(entry["version"]),
                lp=resolve(entry.get("lp"), label),
                reward=resolve(entry.get("reward"), label),
                fusion=bool(entry.get("fusion", False)),
                reward_b=reward_b,
                pool_reward_token_account_b=entry.get("pool_reward_token_account_b"),
                **{name: entry[name] for name in _FARM_ADDRESS_FIELDS},
            )
            if farm.fusion and (farm.reward_b is None or not farm.pool_reward_token_account_b):
                raise ValidationError(f"{label}: fusion farms need reward_b and pool_reward_token_account_b")
            farms.append(farm)

        return cls(tokens=tokens, lp_tokens=lp_tokens, pools=pools, farms=farms)

    @classmethod
    def from_toml(cls, path: Path) -> "PoolRegistry":
        with Path(path).open("rb") as handle:
            payload = tomllib.load(handle)
        registry = cls.from_mapping(payload)
        get_logger(__name__).info(
            "Loaded catalog %s: %d pools, %d farms", path, len(registry.pools), len(registry.farms)
        )
        return registry


def _token_from(entry: Mapping[str, Any]) -> TokenInfo:
    _require(entry, ("symbol", "mint", "decimals"), f"token {entry.get('symbol')!r}")
    return TokenInfo(
        symbol=entry["symbol"],
        mint=entry["mint"],
        decimals=int(entry["decimals"]),
        name=entry.get("name", entry["symbol"]),
    )


def _require(entry: Mapping[str, Any], keys: Iterable[str], label: str) -> None:
    missing = [key for key in keys if entry.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"{label}: missing {', '.join(missing)}")


def load_registry(config: Optional[AppConfig] = None) -> PoolRegistry:
    cfg = config or get_app_config()
    path = Path(cfg.registry.catalog_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    if not path.exists():
        raise ValidationError(f"catalog file {path} does not exist")
    return PoolRegistry.from_toml(path)


__all__ = ["FarmSearchResult", "PoolRegistry", "load_registry"]
