from typing import List

from opentelemetry.sdk._logs.export import InMemoryLogExporter
from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricExportResult,
    MetricsData,
)


class CapturingMetricExporter(MetricExporter):
    """Metric exporter keeping exported data in memory."""

    def __init__(self, preferred_temporality=None, preferred_aggregation=None):
        super().__init__(
            preferred_temporality=preferred_temporality,
            preferred_aggregation=preferred_aggregation,
        )
        self.exported: List[MetricsData] = []

    def export(self, metrics_data, timeout_millis: float = 10_000, **kwargs):
        self.exported.append(metrics_data)
        return MetricExportResult.SUCCESS

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        pass

    def get_metrics(self):
        """Returns all exported metrics, by name."""
        metrics = {}
        for metrics_data in self.exported:
            for resource_metrics in metrics_data.resource_metrics:
                for scope_metrics in resource_metrics.scope_metrics:
                    for metric in scope_metrics.metrics:
                        metrics.setdefault(metric.name, []).append(metric)
        return metrics



def get_log_records(exporter: InMemoryLogExporter):
    """Returns the log records exported to the given in-memory exporter."""
    return [log_data.log_record for log_data in exporter.get_finished_logs()]
