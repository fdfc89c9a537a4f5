"""Metrics instrumentation that logs structured lines and optionally exports to Prometheus."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Callable, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

_MetricKey = Tuple[str, str, Tuple[str, ...]]


class MetricsRecorder:
    """Emit queue and gateway metrics via logging and (optionally) Prometheus."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "insightboard",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "insightboard"
        self._logger = logger or logging.getLogger("insightboard.metrics")
        self._prometheus_enabled = prometheus_enabled
        if registry is None and prometheus_enabled:
            registry = CollectorRegistry()
        self._registry = registry
        self._collectors: dict[_MetricKey, Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        value = int(value)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        self._export(
            "counter",
            metric,
            clean_tags,
            lambda collector: collector.inc(float(max(value, 0))),
        )

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        self._export("gauge", metric, clean_tags, lambda collector: collector.set(float(value)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric, recording milliseconds to logs."""

        if not self._enabled:
            return
        seconds = max(duration_seconds, 0.0)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"duration_ms": round(seconds * 1000.0, 4)}, tags=clean_tags)
        self._export("histogram", metric, clean_tags, lambda collector: collector.observe(seconds))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any):
        """Context manager that records execution time for the wrapped block."""

        if not self._enabled:
            yield
            return

        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, *, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={self._stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={self._stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _export(
        self,
        kind: str,
        metric: str,
        tags: dict[str, Any],
        apply: Callable[[Any], None],
    ) -> None:
        if not self.prometheus_enabled:
            return
        label_keys = tuple(sorted(tags))
        label_names = tuple(self._sanitize_label(name) for name in label_keys)
        key = (kind, metric, label_names)
        collector = self._collectors.get(key)
        if collector is None:
            factory = {"counter": Counter, "gauge": Gauge, "histogram": Histogram}[kind]
            collector = factory(
                self._prom_metric_name(metric),
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._collectors[key] = collector
        if label_names:
            values = {name: self._stringify(tags[raw]) for name, raw in zip(label_names, label_keys)}
            apply(collector.labels(**values))
        else:
            apply(collector)

    def _prom_metric_name(self, metric: str) -> str:
        cleaned = _PROM_NAME_RE.sub("_", metric)
        return f"{_PROM_NAME_RE.sub('_', self._namespace)}_{cleaned}".strip("_")

    @staticmethod
    def _sanitize_label(label: str) -> str:
        return _PROM_NAME_RE.sub("_", label) or "label"

    @staticmethod
    def _stringify(value: Any) -> str:
        if isinstance(value, float):
            return f"{value:.4f}" if not value.is_integer() else f"{int(value)}"
        return str(value)


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: val for key, val in tags.items() if val is not None}


__all__ = ["MetricsRecorder"]
