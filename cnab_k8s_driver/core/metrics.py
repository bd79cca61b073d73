from dataclasses import dataclass
from typing import Optional

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import Meter, NoOpMeterProvider
from opentelemetry.sdk.metrics import MeterProvider as SdkMeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from cnab_k8s_driver.settings import Settings


@dataclass
class MetricsConfig:
    service_name: str = "cnab-k8s-driver"
    service_version: str = "0.1.0"
    otlp_endpoint: Optional[str] = None
    export_interval_millis: int = 10000


class BaseMetrics:
    def __init__(self, settings: Settings, meter_name: str | None = None):
        """Initialize metrics with their own meter.

        Args:
            settings: Driver settings; metrics stay no-op unless enabled with an OTLP endpoint.
            meter_name: Optional name for the meter. Defaults to class name.
        """
        self._settings = settings
        config = MetricsConfig(
            service_name=settings.SERVICE_NAME,
            otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        )
        meter_name = meter_name or self.__class__.__name__
        self._meter_provider: SdkMeterProvider | None = None
        self._meter = self._create_meter(config, meter_name)
        self._create_instruments()

    def _create_meter(self, config: MetricsConfig, meter_name: str) -> Meter:
        # No endpoint, no exporter threads
        if not self._settings.ENABLE_METRICS or not config.otlp_endpoint:
            return NoOpMeterProvider().get_meter(meter_name)

        resource = Resource.create(
            {"service.name": config.service_name, "service.version": config.service_version, "meter.name": meter_name}
        )
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=config.otlp_endpoint),
            export_interval_millis=config.export_interval_millis,
        )
        self._meter_provider = SdkMeterProvider(resource=resource, metric_readers=[reader])
        return self._meter_provider.get_meter(meter_name)

    def _create_instruments(self) -> None:
        """Create metric instruments. Override in subclasses."""
        pass

    def close(self) -> None:
        if self._meter_provider is not None:
            self._meter_provider.shutdown()
            self._meter_provider = None


class DriverMetrics(BaseMetrics):
    """Metrics for invocation image runs and the cluster objects they create."""

    def _create_instruments(self) -> None:
        self.runs = self._meter.create_counter(
            name="driver.runs.total", description="Total number of runs by action and outcome", unit="1"
        )

        self.run_duration = self._meter.create_histogram(
            name="driver.run.duration", description="Time from run start to terminal state in seconds", unit="s"
        )

        self.active_runs = self._meter.create_up_down_counter(
            name="driver.runs.active", description="Number of runs currently in progress", unit="1"
        )

        self.objects_created = self._meter.create_counter(
            name="driver.objects.created.total", description="Cluster objects created by kind", unit="1"
        )

        self.cleanup_failures = self._meter.create_counter(
            name="driver.cleanup.failures.total", description="Cleanup failures by object kind", unit="1"
        )

    def record_run(self, action: str, outcome: str, duration_seconds: float) -> None:
        self.runs.add(1, attributes={"action": action, "outcome": outcome})
        self.run_duration.record(duration_seconds, attributes={"action": action, "outcome": outcome})

    def update_active_runs(self, delta: int) -> None:
        self.active_runs.add(delta)

    def record_object_created(self, kind: str) -> None:
        self.objects_created.add(1, attributes={"kind": kind})

    def record_cleanup_failure(self, kind: str) -> None:
        self.cleanup_failures.add(1, attributes={"kind": kind})
