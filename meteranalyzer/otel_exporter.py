"""OpenTelemetry push exporter using OTLP."""
from typing import Callable, Dict, List
import logging

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from meteranalyzer.config import OTELExporterConfig
from meteranalyzer.family import Family

logger = logging.getLogger(__name__)


class OTELExporter:
    """Pushes the latest evaluated family of every rule as observable gauges.

    Args:
        config: exporter settings
        results: callable returning ``{rule_name: family}``; read by the gauge
            callbacks on every collection
        reader: metric reader to use; defaults to a periodic OTLP/gRPC reader
    """

    def __init__(
        self,
        config: OTELExporterConfig,
        results: Callable[[], Dict[str, Family]],
        reader: MetricReader = None,
    ):
        self.config = config
        self.results = results
        self.gauges: Dict[str, object] = {}

        resource_attrs = {
            "service.name": "meter-analyzer",
        }
        resource_attrs.update(self.config.resource)

        if reader is None:
            reader = self._otlp_reader()

        self.meter_provider = MeterProvider(
            resource=Resource.create(resource_attrs),
            metric_readers=[reader],
        )
        self.meter = self.meter_provider.get_meter(__name__)

        logger.info(f"OTEL exporter initialized, pushing to {self.config.endpoint}")

    def _otlp_reader(self) -> MetricReader:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        exporter = OTLPMetricExporter(
            endpoint=self.config.endpoint,
            insecure=self.config.insecure,
            headers=tuple(self.config.headers.items()) if self.config.headers else None
        )
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=self.config.export_interval_s * 1000
        )

    def register_rule(self, rule_name: str):
        """Create the observable gauge for a rule (once)."""
        if rule_name in self.gauges:
            return

        otel_metric_name = f"{self.config.prefix}{rule_name}"

        def callback(options):
            return self.observations(rule_name)

        self.gauges[rule_name] = self.meter.create_observable_gauge(
            name=otel_metric_name,
            callbacks=[callback],
            description=f"Evaluated rule {rule_name}",
            unit="1"
        )
        logger.info(f"Registered OTEL gauge: {otel_metric_name}")

    def observations(self, rule_name: str) -> List[metrics.Observation]:
        """Current observations for one rule; EMPTY yields none."""
        family = self.results().get(rule_name)
        if family is None or family.is_empty:
            return []
        return [
            metrics.Observation(sample.value, attributes=sample.labels.to_dict())
            for sample in family.samples
        ]

    def shutdown(self):
        """Shutdown OTEL exporter."""
        self.meter_provider.shutdown()
        logger.info("OTEL exporter shutdown complete")
