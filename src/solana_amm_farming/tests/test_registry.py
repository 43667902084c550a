from __future__ import annotations

from pathlib import Path

import pytest

from solana_amm_farming.config.settings import AppConfig, ProgramConfig, RegistryConfig
from solana_amm_farming.errors import FarmNotFound, PoolNotFound, ValidationError
from solana_amm_farming.ingestion.registry import PoolRegistry, load_registry

from .fakes import make_pool, new_address

CATALOG_PATH = Path(__file__).resolve().parents[3] / "config" / "catalog.toml"


def _catalog_text(*, pool_version: int = 4, order_key: str = "amm_target_orders", fusion: bool = True) -> str:
    ray, usdc, lp = new_address(), new_address(), new_address()
    pool_fields = "\n".join(
        f'{key} = "{new_address()}"'
        for key in (
            "program_id",
            "amm_id",
            "amm_authority",
            "amm_open_orders",
            order_key,
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
    )
    farm_fields = "\n".join(
        f'{key} = "{new_address()}"'
        for key in ("program_id", "pool_id", "pool_authority", "pool_lp_token_account", "pool_reward_token_account")
    )
    fusion_fields = f'fusion = true\nreward_b = "USDC"\npool_reward_token_account_b = "{new_address()}"' if fusion else ""
    return f"""
[[tokens]]
symbol = "RAY"
mint = "{ray}"
decimals = 6

[[tokens]]
symbol = "USDC"
mint = "{usdc}"
decimals = 6

[[lp_tokens]]
symbol = "RAY-USDC-V4"
mint = "{lp}"
decimals = 6

[[pools]]
name = "RAY-USDC"
version = {pool_version}
lp = "RAY-USDC-V4"
coin = "RAY"
pc = "USDC"
{pool_fields}

[[farms]]
name = "RAY-USDC"
version = 5
lp = "RAY-USDC-V4"
reward = "RAY"
{farm_fields}
{fusion_fields}
"""


def _load(tmp_path: Path, text: str) -> PoolRegistry:
    path = tmp_path / "catalog.toml"
    path.write_text(text)
    return PoolRegistry.from_toml(path)


def test_lookups_by_identity_lp_and_address(tmp_path: Path):
    registry = _load(tmp_path, _catalog_text())
    pool = registry.pool("RAY-USDC", 4)
    farm = registry.farm("RAY-USDC", 5)
    assert pool.coin.symbol == "RAY" and pool.pc.symbol == "USDC"
    assert registry.pool_by_lp_mint(pool.lp.mint) is pool
    assert registry.farm_by_address(farm.pool_id) is farm
    assert farm.fusion and farm.reward_b.symbol == "USDC"
    assert registry.token("RAY-USDC-V4").mint == pool.lp.mint


def test_missing_pool_and_farm_raise_typed_errors(tmp_path: Path):
    registry = _load(tmp_path, _catalog_text())
    with pytest.raises(PoolNotFound) as excinfo:
        registry.pool("RAY-USDC", 3)
    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.kind == "pool_not_found"
    with pytest.raises(FarmNotFound):
        registry.farm("SOL-USDC", 5)


def test_pool_family_needs_matching_order_account(tmp_path: Path):
    with pytest.raises(ValidationError, match="amm_quantities"):
        _load(tmp_path, _catalog_text(pool_version=3))
    registry = _load(tmp_path, _catalog_text(pool_version=3, order_key="amm_quantities"))
    assert registry.pool("RAY-USDC", 3).amm_quantities


def test_fusion_farm_without_second_reward_is_rejected(tmp_path: Path):
    text = _catalog_text(fusion=False) + "fusion = true\n"
    with pytest.raises(ValidationError, match="fusion farms need"):
        _load(tmp_path, text)


def test_search_by_each_criterion(tmp_path: Path):
    registry = _load(tmp_path, _catalog_text())
    result = registry.search(from_name="RAY-USDC", from_reward="ray")
    assert result.by_name.name == "RAY-USDC"
    assert result.by_reward is result.by_name
    assert result.by_lp is None

    result = registry.search(from_lp="RAY-USDC-V4")
    assert result.by_lp.name == "RAY-USDC"

    with pytest.raises(ValidationError):
        registry.search(from_name="a", from_lp="b", from_reward="c")


def test_search_by_lp_falls_back_to_lp_catalog():
    lp_only = make_pool().lp
    registry = PoolRegistry(lp_tokens=[lp_only])
    result = registry.search(from_lp=lp_only.symbol)
    assert result.by_lp is None
    assert result.lp_token == lp_only


def test_with_pools_returns_new_registry():
    pool = make_pool(coin_reserve=None)
    registry = PoolRegistry(pools=[pool])
    refreshed = make_pool(name=pool.name, version=pool.version)
    updated = registry.with_pools([refreshed])
    assert registry.pool(pool.name, pool.version).coin_balance is None
    assert updated.pool(pool.name, pool.version) is refreshed


def test_bundled_catalog_loads_default_stake_farm():
    config = AppConfig(registry=RegistryConfig(catalog_path=CATALOG_PATH))
    registry = load_registry(config)
    farm = registry.default_stake_farm(ProgramConfig())
    assert farm.name == "RAY"
    assert farm.program_id == ProgramConfig().stake_program_id
    assert registry.pool("RAY-USDC", 4).amm_target_orders


def test_missing_catalog_file(tmp_path: Path):
    config = AppConfig(registry=RegistryConfig(catalog_path=tmp_path / "absent.toml"))
    with pytest.raises(ValidationError):
        load_registry(config)
