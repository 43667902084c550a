from __future__ import annotations

import json
from pathlib import Path

import pytest

from solana_amm_farming import main as cli
from solana_amm_farming.config import settings
from solana_amm_farming.errors import ValidationError

CATALOG_PATH = Path(__file__).resolve().parents[3] / "config" / "catalog.toml"


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("FARM_CONFIG_FILE", str(tmp_path / "missing.toml"))
    monkeypatch.delenv("FARM_PROFILE", raising=False)
    settings.get_app_config.cache_clear()
    payloads = []
    monkeypatch.setattr(cli, "_emit", payloads.append)
    yield payloads
    settings.get_app_config.cache_clear()


def test_parse_prices_merges_file_and_arguments(tmp_path: Path):
    prices_file = tmp_path / "prices.json"
    prices_file.write_text(json.dumps({"RAY": 1.5, "USDC": 1}))
    prices = cli.parse_prices(["RAY=2.25", " SOL =150"], prices_file)
    assert prices == {"RAY": 2.25, "USDC": 1.0, "SOL": 150.0}


@pytest.mark.parametrize("entry", ["RAY", "=1", "RAY=abc"])
def test_parse_prices_rejects_malformed_entries(entry: str):
    with pytest.raises(ValidationError):
        cli.parse_prices([entry])


def test_parse_market_allows_partial_figures():
    market = cli.parse_market(["mintA=12.5:1000", "mintB=:250"])
    assert market["mintA"].fee_apy == 12.5
    assert market["mintA"].tvl == 1000.0
    assert market["mintB"].fee_apy is None
    assert market["mintB"].tvl == 250.0
    with pytest.raises(ValidationError):
        cli.parse_market(["mintC=x:1"])


def test_search_command_reports_matching_farm(emitted):
    assert cli.main(["--catalog", str(CATALOG_PATH), "search", "--reward", "ray"]) == 0
    (result,) = emitted
    assert result.by_reward.name == "RAY"
    assert result.by_name is None


def test_search_with_every_criterion_fails(emitted):
    argv = ["--catalog", str(CATALOG_PATH), "search", "--name", "RAY", "--lp", "RAY", "--reward", "RAY"]
    assert cli.main(argv) == 1
    assert emitted == []


def test_add_liquidity_requires_one_amount():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["add-liquidity", "RAY-USDC", "4", "--from-amount", "1", "--to-amount", "2"])
