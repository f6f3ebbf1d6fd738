"""Prometheus pull exporter using prometheus_client."""
from typing import Callable, Dict
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, start_http_server
)
from prometheus_client.core import GaugeMetricFamily
import logging

from meteranalyzer.config import PrometheusExporterConfig
from meteranalyzer.family import Family

logger = logging.getLogger(__name__)


class FamilyCollector:
    """Exposes the latest evaluated family of every rule as a gauge.

    Args:
        results: callable returning ``{rule_name: family}``; read on every scrape
        prefix: prepended to every rule name
    """

    def __init__(self, results: Callable[[], Dict[str, Family]], prefix: str = ""):
        self.results = results
        self.prefix = prefix

    def collect(self):
        for rule_name, family in sorted(self.results().items()):
            if family.is_empty:
                continue

            # Series of one family may carry different label keys
            label_names = sorted({key for s in family.samples for key in s.labels})
            gauge = GaugeMetricFamily(
                f"{self.prefix}{rule_name}",
                f"Evaluated rule {rule_name} (downsampling {family.context.downsampling.value})",
                labels=label_names,
            )
            for sample in family.samples:
                gauge.add_metric(
                    [sample.labels.get(name, "") for name in label_names],
                    sample.value,
                    timestamp=sample.timestamp / 1000.0,
                )
            yield gauge


class PrometheusExporter:
    """Manages the Prometheus registry and HTTP server."""

    def __init__(self, config: PrometheusExporterConfig, results: Callable[[], Dict[str, Family]]):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = CollectorRegistry()
        self.collector = FamilyCollector(results, prefix=config.prefix)
        self.registry.register(self.collector)
        self._server_started = False

    def start(self):
        """Start Prometheus HTTP server."""
        if self._server_started:
            return
        try:
            start_http_server(
                self.config.port,
                addr=self.config.bind_address,
                registry=self.registry
            )
            self._server_started = True
            logger.info(
                f"Prometheus exporter listening on "
                f"{self.config.bind_address}:{self.config.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise


class SelfMetrics:
    """Self-monitoring metrics for the analyzer engine."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.samples_ingested_total = Counter(
            f"{prefix}analyzer_samples_ingested_total",
            "Total number of raw samples ingested",
            ["metric_name"],
            registry=registry
        )

        self.evaluations_total = Counter(
            f"{prefix}analyzer_evaluations_total",
            "Total number of rule evaluations",
            ["rule"],
            registry=registry
        )

        self.evaluation_errors_total = Counter(
            f"{prefix}analyzer_evaluation_errors_total",
            "Total number of failed rule evaluations",
            ["rule"],
            registry=registry
        )

        self.empty_results_total = Counter(
            f"{prefix}analyzer_empty_results_total",
            "Total number of rule evaluations that produced no data",
            ["rule"],
            registry=registry
        )

        self.evaluation_duration_seconds = Histogram(
            f"{prefix}analyzer_evaluation_duration_seconds",
            "Duration of one evaluation pass in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry
        )

        self.output_series = Gauge(
            f"{prefix}analyzer_output_series",
            "Number of series in the latest result of a rule",
            ["rule"],
            registry=registry
        )

    def record_ingest(self, metric_name: str, count: int):
        self.samples_ingested_total.labels(metric_name=metric_name).inc(count)

    def record_evaluation(self, rule: str, family: Family):
        self.evaluations_total.labels(rule=rule).inc()
        self.output_series.labels(rule=rule).set(len(family))
        if family.is_empty:
            self.empty_results_total.labels(rule=rule).inc()

    def record_error(self, rule: str):
        self.evaluation_errors_total.labels(rule=rule).inc()

    def record_duration(self, duration: float):
        self.evaluation_duration_seconds.observe(duration)
