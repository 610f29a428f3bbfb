"""
Tests for the Prometheus exporter text format.
"""

from modules.metrics import METRIC_HELP, MetricNames, PrometheusExporter


def test_counter_accumulates():
    exporter = PrometheusExporter()

    exporter.inc_counter(MetricNames.REBALANCE_ATTEMPTS_TOTAL)
    exporter.inc_counter(MetricNames.REBALANCE_ATTEMPTS_TOTAL, 2)

    assert exporter.get_metric(MetricNames.REBALANCE_ATTEMPTS_TOTAL) == 3


def test_labels_are_separate_series():
    exporter = PrometheusExporter()

    exporter.inc_counter(MetricNames.REBALANCE_FAILURES_TOTAL, labels={"stage": "paying"})
    exporter.inc_counter(MetricNames.REBALANCE_FAILURES_TOTAL, labels={"stage": "validating"})

    assert exporter.get_metric(MetricNames.REBALANCE_FAILURES_TOTAL, {"stage": "paying"}) == 1
    assert exporter.get_metric(MetricNames.REBALANCE_FAILURES_TOTAL) is None


def test_format():
    exporter = PrometheusExporter()
    name = MetricNames.REBALANCE_FEE_TOTAL_SATS
    exporter.inc_counter(name, 5, {"kind": "payment"}, METRIC_HELP[name])

    text = exporter.format_prometheus()

    assert f"# HELP {name} {METRIC_HELP[name]}" in text
    assert f"# TYPE {name} counter" in text
    assert f'{name}{{kind="payment"}} 5' in text
