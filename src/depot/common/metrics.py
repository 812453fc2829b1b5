"""Process-local metrics rendered in the Prometheus text exposition format."""

from __future__ import annotations

from typing import Iterable


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description

    def samples(self) -> Iterable[tuple[str, float]]:
        raise NotImplementedError

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        lines.extend(f"{series} {value}" for series, value in self.samples())
        return "\n".join(lines) + "\n"


class Counter(_Metric):
    kind = "counter"

    def __init__(self, name: str, description: str = "") -> None:
        super().__init__(name, description)
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counters only increase")
        self._value += amount

    def samples(self) -> Iterable[tuple[str, float]]:
        yield self.name, self._value


class Gauge(_Metric):
    kind = "gauge"

    def __init__(self, name: str, description: str = "") -> None:
        super().__init__(name, description)
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def inc(self, amount: float = 1.0) -> None:
        self._value += amount

    def dec(self, amount: float = 1.0) -> None:
        self._value -= amount

    def samples(self) -> Iterable[tuple[str, float]]:
        yield self.name, self._value


class Histogram(_Metric):
    """Cumulative buckets; the implicit ``+Inf`` bucket equals the observation count."""

    kind = "histogram"

    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        super().__init__(name, description)
        self._bounds = sorted(buckets)
        self._hits = [0] * len(self._bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        self._count += 1
        self._sum += value
        for index, bound in enumerate(self._bounds):
            if value <= bound:
                self._hits[index] += 1

    def samples(self) -> Iterable[tuple[str, float]]:
        for bound, hits in zip(self._bounds, self._hits):
            yield f'{self.name}_bucket{{le="{bound}"}}', hits
        yield f'{self.name}_bucket{{le="+Inf"}}', self._count
        yield f"{self.name}_sum", self._sum
        yield f"{self.name}_count", self._count


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}

    def register(self, metric):
        self._metrics[metric.name] = metric
        return metric

    def render(self) -> str:
        return "\n".join(metric.render() for metric in self._metrics.values()) + "\n"


GLOBAL_REGISTRY = MetricsRegistry()
