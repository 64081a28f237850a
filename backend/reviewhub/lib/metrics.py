"""
Prometheus-compatible metrics for observability.

Tracks how often the data layer degrades:
- Local fallbacks (by entity and operation)
- Remote backend errors (by entity, operation and error kind)
- Inactive chat rooms removed by the cleanup job

Usage:
    from reviewhub.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_fallback(entity="review", operation="create")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the data layer.

    Counters:
    - local_fallback_total: Writes/reads served by the local tier (labels: entity, operation)
    - remote_errors_total: Remote backend failures (labels: entity, operation, kind)
    - rooms_cleaned_total: Inactive chat rooms deleted by cleanup

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    # ===== Data layer metrics =====

    def increment_fallback(self, entity: str, operation: str, amount: int = 1):
        """
        Increment local fallback counter.

        Args:
            entity: Record type (review, comment, chat_room, chat_message)
            operation: Operation that fell back (create, read, delete)
            amount: Increment amount (default 1)
        """
        labels = {
            "entity": entity.lower(),
            "operation": operation.lower(),
        }
        self._increment("local_fallback_total", labels, amount)

    def increment_remote_errors(self, entity: str, operation: str, kind: str = "unavailable", amount: int = 1):
        """Increment remote backend error counter."""
        labels = {
            "entity": entity.lower(),
            "operation": operation.lower(),
            "kind": kind.lower(),
        }
        self._increment("remote_errors_total", labels, amount)

    def increment_rooms_cleaned(self, amount: int = 1):
        """Increment deleted inactive rooms counter."""
        self._increment("rooms_cleaned_total", {}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            output_lines.append(f"# HELP {metric_name} {self._get_help_text(metric_name)}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def _get_help_text(self, metric_name: str) -> str:
        """Get help text for metric."""
        help_texts = {
            "local_fallback_total": "Total number of operations served by device-local storage",
            "remote_errors_total": "Total number of remote backend failures",
            "rooms_cleaned_total": "Total number of inactive chat rooms deleted",
        }
        return help_texts.get(metric_name, "Counter metric")

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """
        Get current value of a specific counter.

        Args:
            metric_name: Name of the metric
            labels: Label filters

        Returns:
            Current counter value
        """
        return self._get_value(metric_name, labels)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
