"""Analyzer engine: ingestion, rule evaluation and export fan-out."""
import threading
import time
import logging
from dataclasses import replace
from typing import Dict, Iterable, Optional, Tuple

from meteranalyzer.config import Config, RuleConfig
from meteranalyzer.errors import ValidationError
from meteranalyzer.family import EMPTY, Context, Family, SampleFamily
from meteranalyzer.lookback import InMemoryLookbackResolver
from meteranalyzer.pipeline import EvaluationContext, Step, run_pipeline
from meteranalyzer.prom_exporter import PrometheusExporter, SelfMetrics
from meteranalyzer.series import Sample

logger = logging.getLogger(__name__)


class AnalyzerEngine:
    """Holds the latest raw families, evaluates rules over them and exports results."""

    def __init__(self, config: Config, start_exporters: bool = True):
        self.config = config
        self.running = False
        self.evaluation_count = 0
        self.start_time = time.time()

        # Latest raw family per ingested metric, latest result per rule
        self.sources: Dict[str, Family] = {}
        self.results: Dict[str, Family] = {}
        self._lock = threading.Lock()

        # Samples that reached each rate-style step, keyed by (rule, step index)
        self.histories: Dict[Tuple[str, int], InMemoryLookbackResolver] = {}

        self._initialize_exporters(start_exporters)

        self.self_metrics = SelfMetrics(
            registry=self.prom_exporter.registry if self.prom_exporter else None,
            prefix=self.config.exporters.prometheus.prefix
        )

        logger.info(f"Analyzer engine initialized with {len(self.config.rules)} rules")

    def _initialize_exporters(self, start_exporters: bool):
        """Initialize Prometheus and OTEL exporters."""
        if self.config.exporters.prometheus.enabled:
            self.prom_exporter = PrometheusExporter(
                self.config.exporters.prometheus,
                self.snapshot
            )
            if start_exporters:
                self.prom_exporter.start()
            logger.info("Prometheus exporter initialized")
        else:
            self.prom_exporter = None
            logger.info("Prometheus exporter disabled")

        if self.config.exporters.otel.enabled:
            from meteranalyzer.otel_exporter import OTELExporter

            self.otel_exporter = OTELExporter(self.config.exporters.otel, self.snapshot)
            for rule in self.config.rules:
                self.otel_exporter.register_rule(rule.name)
            logger.info("OTEL exporter initialized")
        else:
            self.otel_exporter = None
            logger.info("OTEL exporter disabled")

    def _history(self, rule: str, step: int) -> InMemoryLookbackResolver:
        key = (rule, step)
        with self._lock:
            history = self.histories.get(key)
            if history is None:
                retention_s = self.config.lookback.retention_s
                history = InMemoryLookbackResolver(
                    retention_ms=retention_s * 1000 if retention_s is not None else None
                )
                self.histories[key] = history
            return history

    def snapshot(self) -> Dict[str, Family]:
        """Copy of the latest rule results."""
        with self._lock:
            return dict(self.results)

    def ingest(self, metric: str, samples: Iterable[Sample], context: Optional[Context] = None) -> Family:
        """Replace the current family of ``metric``."""
        samples = list(samples)
        if not samples:
            raise ValidationError(f"Cannot ingest an empty sample set for '{metric}'")
        family = SampleFamily.build(samples, context)

        with self._lock:
            self.sources[metric] = family

        self.self_metrics.record_ingest(metric, len(samples))
        logger.debug(f"Ingested {len(samples)} samples for '{metric}'")
        return family

    def family(self, name: str) -> Family:
        """Latest family for a rule result or ingested metric; EMPTY when unknown."""
        with self._lock:
            if name in self.results:
                return self.results[name]
            return self.sources.get(name, EMPTY)

    def evaluate_rule(self, rule: RuleConfig) -> Family:
        """Evaluate one rule against the current sources."""
        source = self.family(rule.source)
        if rule.downsampling is not None and not source.is_empty:
            source = SampleFamily.build(
                source.samples, replace(source.context, downsampling=rule.downsampling)
            )

        ctx = EvaluationContext(
            miss_policy=self.config.lookback.miss_policy,
            families=self.family,
            history=lambda step: self._history(rule.name, step),
        )
        steps = [Step(op=s.op, args=tuple(s.args), kwargs=dict(s.kwargs)) for s in rule.pipeline]
        return run_pipeline(source, steps, ctx)

    def evaluate(self) -> Dict[str, Family]:
        """Evaluate every rule once, in configuration order."""
        evaluation_start = time.time()
        evaluated: Dict[str, Family] = {}

        for rule in self.config.rules:
            try:
                result = self.evaluate_rule(rule)
            except Exception as e:
                logger.error(f"Error evaluating rule '{rule.name}': {e}")
                self.self_metrics.record_error(rule.name)
                continue

            with self._lock:
                self.results[rule.name] = result
            evaluated[rule.name] = result
            self.self_metrics.record_evaluation(rule.name, result)

        self.self_metrics.record_duration(time.time() - evaluation_start)
        with self._lock:
            self.evaluation_count += 1
            count = self.evaluation_count

        if count % 60 == 0:
            logger.info(
                f"Evaluation {count}: {len(evaluated)}/{len(self.config.rules)} rules "
                f"in {time.time() - evaluation_start:.3f}s"
            )
        return evaluated

    def run(self):
        """Run the evaluation loop."""
        self.running = True
        self.start_time = time.time()

        logger.info("Starting analyzer engine")

        interval = self.config.global_.evaluation_interval_s

        while self.running:
            evaluation_start = time.time()

            try:
                self.evaluate()
            except Exception as e:
                logger.error(f"Error in evaluation pass: {e}", exc_info=True)

            duration = time.time() - evaluation_start
            sleep_time = max(0, interval - duration)

            if sleep_time > 0:
                time.sleep(sleep_time)
            else:
                logger.warning(
                    f"Evaluation took {duration:.3f}s, longer than interval {interval}s"
                )

    def stop(self):
        """Stop the analyzer engine."""
        logger.info("Stopping analyzer engine")
        self.running = False

        if self.otel_exporter:
            self.otel_exporter.shutdown()


def run_engine_thread(engine: AnalyzerEngine):
    """Run engine in a separate thread."""
    try:
        engine.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
        engine.stop()
    except Exception as e:
        logger.error(f"Engine thread error: {e}", exc_info=True)
        engine.stop()
