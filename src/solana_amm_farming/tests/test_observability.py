from __future__ import annotations

import io
import json
import logging

from solana_amm_farming.config.settings import AppConfig, MonitoringConfig
from solana_amm_farming.monitoring import bootstrap_observability
from solana_amm_farming.monitoring.logger import (
    configure_logging,
    correlation_scope,
    current_context,
    current_correlation_id,
    get_logger,
    log_context,
)
from solana_amm_farming.monitoring.metrics import METRICS


def _capture(*, json_logs: bool) -> io.StringIO:
    configure_logging(MonitoringConfig(json_logs=json_logs), force=True)
    stream = io.StringIO()
    logging.getLogger().handlers[0].setStream(stream)
    return stream


def test_json_logs_carry_correlation_id_and_context():
    stream = _capture(json_logs=True)
    with correlation_scope("req-42"), log_context(command="stake"):
        get_logger("solana_amm_farming.execution").info("planned %s", "stake", extra={"farm": "RAY"})
    payload = json.loads(stream.getvalue().strip())
    assert payload["message"] == "planned stake"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "req-42"
    assert payload["context"] == {"command": "stake"}
    assert payload["extra"] == {"farm": "RAY"}
    assert current_correlation_id() == "-"


def test_plain_logs_append_context_pairs():
    stream = _capture(json_logs=False)
    with correlation_scope("req-7"), log_context(pool="RAY-USDC", version=4):
        get_logger("solana_amm_farming.analytics").warning("snapshot missing")
    line = stream.getvalue().strip()
    assert "[req-7]" in line
    assert line.endswith("snapshot missing pool=RAY-USDC version=4")


def test_log_context_nests_and_restores():
    with log_context(command="pools"):
        with log_context(farm_state="abc", command="search"):
            assert current_context() == {"command": "search", "farm_state": "abc"}
        assert current_context() == {"command": "pools"}
    assert current_context() == {}


def test_prometheus_export_sanitizes_metric_names():
    METRICS.reset()
    METRICS.increment("plans.built", action="stake", family="v4")
    METRICS.increment("plans.built", action="harvest", family="v3")
    METRICS.increment("rpc.requests", 2, method="get_multiple_accounts", outcome="ok")
    METRICS.gauge("yield.records", 3, status="active")
    METRICS.observe("transactions.confirm_seconds", 0.5)
    output = METRICS.export_prometheus()
    lines = [line for line in output.splitlines() if line]
    assert lines.count("# TYPE plans_built counter") == 1
    assert "plans.built" not in output
    assert 'plans_built{action="stake",family="v4"} 1.0' in lines
    assert 'plans_built{action="harvest",family="v3"} 1.0' in lines
    assert 'rpc_requests{method="get_multiple_accounts",outcome="ok"} 2.0' in lines
    assert 'yield_records{status="active"} 3.0' in lines
    assert 'transactions_confirm_seconds{quantile="p50"} 0.5' in lines
    assert "transactions_confirm_seconds_count 1.0" in lines
    METRICS.reset()


def test_labelled_counters_are_separate_series():
    METRICS.reset()
    METRICS.increment("yield.failures", kind="arithmetic")
    METRICS.increment("yield.failures", kind="arithmetic")
    METRICS.increment("yield.failures", kind="validation")
    assert METRICS.get("yield.failures", kind="arithmetic") == 2.0
    assert METRICS.get("yield.failures") == 0.0
    assert METRICS.snapshot()["counters"]["yield.failures[kind=validation]"] == 1.0
    METRICS.reset()


def test_timer_records_a_histogram_sample():
    METRICS.reset()
    with METRICS.timer("yield.evaluate_seconds"):
        pass
    stats = METRICS.snapshot()["histograms"]["yield.evaluate_seconds"]
    assert stats["count"] == 1.0
    METRICS.reset()


def test_bootstrap_observability_resets_metrics():
    METRICS.increment("plans.built", action="stake")
    config = AppConfig(monitoring=MonitoringConfig(json_logs=False, log_level="WARNING"))
    bootstrap_observability(config=config)
    assert METRICS.get("plans.built", action="stake") == 0.0
    assert logging.getLogger().level == logging.WARNING
