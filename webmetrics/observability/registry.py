from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Mapping, Sequence

from prometheus_client import CollectorRegistry, Histogram, generate_latest


class MeterNotFoundError(LookupError):
    """Raised when no registered meter matches a name + tag search."""

    def __init__(self, name: str, tags: Mapping[str, str]) -> None:
        self.name = name
        self.tags = dict(tags)
        rendered = ", ".join(f"{k}={v}" for k, v in sorted(self.tags.items())) or "<none>"
        super().__init__(f"Unable to find a timer named '{name}' with tags [{rendered}]")


@dataclass(frozen=True)
class ValueAtPercentile:
    percentile: float
    value: float


@dataclass(frozen=True)
class HistogramSnapshot:
    count: int
    total: float
    percentile_values: tuple[ValueAtPercentile, ...] = ()

    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


def _prometheus_name(name: str) -> str:
    base = name.replace(".", "_").replace("-", "_")
    return f"{base}_seconds"


def _estimate_quantile(q: float, buckets: Sequence[tuple[float, float]]) -> float:
    """Linear interpolation inside cumulative buckets, like PromQL histogram_quantile."""

    if not buckets:
        return 0.0
    total = buckets[-1][1]
    if total <= 0:
        return 0.0

    rank = q * total
    lower_bound = 0.0
    lower_count = 0.0
    for upper_bound, cumulative in buckets:
        if cumulative >= rank:
            if upper_bound == float("inf"):
                # Nothing to interpolate against past the last finite bucket.
                return lower_bound
            in_bucket = cumulative - lower_count
            if in_bucket <= 0:
                return upper_bound
            return lower_bound + (upper_bound - lower_bound) * ((rank - lower_count) / in_bucket)
        lower_bound, lower_count = upper_bound, cumulative
    return lower_bound


class Timer:
    """One (name, tags) time series backed by a labelled prometheus Histogram child."""

    def __init__(
        self,
        name: str,
        tags: Mapping[str, str],
        histogram: Histogram,
        percentiles: Sequence[float],
    ) -> None:
        self.name = name
        self.tags: dict[str, str] = dict(tags)
        self.percentiles: tuple[float, ...] = tuple(percentiles)
        self._histogram = histogram
        self._child = histogram.labels(**self.tags) if self.tags else histogram

    def record(self, seconds: float) -> None:
        self._child.observe(max(float(seconds), 0.0))

    def _samples(self) -> tuple[int, float, list[tuple[float, float]]]:
        count = 0
        total = 0.0
        buckets: list[tuple[float, float]] = []
        for metric in self._histogram.collect():
            for sample in metric.samples:
                labels = {k: v for k, v in sample.labels.items() if k != "le"}
                if labels != self.tags:
                    continue
                if sample.name.endswith("_count"):
                    count = int(sample.value)
                elif sample.name.endswith("_sum"):
                    total = float(sample.value)
                elif sample.name.endswith("_bucket"):
                    buckets.append((float(sample.labels["le"]), float(sample.value)))
        buckets.sort(key=lambda b: b[0])
        return count, total, buckets

    def count(self) -> int:
        return self._samples()[0]

    def total_time(self) -> float:
        return self._samples()[1]

    def take_snapshot(self) -> HistogramSnapshot:
        count, total, buckets = self._samples()
        values = tuple(ValueAtPercentile(p, _estimate_quantile(p, buckets)) for p in self.percentiles)
        return HistogramSnapshot(count=count, total=total, percentile_values=values)

    def __repr__(self) -> str:
        return f"Timer(name={self.name!r}, tags={self.tags!r})"


@dataclass
class _TimerFamily:
    histogram: Histogram
    tag_keys: tuple[str, ...]
    percentiles: tuple[float, ...]
    buckets: tuple[float, ...]


class MeterRegistry:
    """Thread-safe timer registry on top of a private prometheus CollectorRegistry.

    Aggregation is left to prometheus_client; this class only tracks timer
    identity (name + tag set) so timers can be searched by partial tags.
    """

    def __init__(self, collector_registry: CollectorRegistry | None = None) -> None:
        self.collector_registry = collector_registry or CollectorRegistry(auto_describe=True)
        self._lock = Lock()
        self._families: dict[str, _TimerFamily] = {}
        self._timers: dict[tuple[str, frozenset[tuple[str, str]]], Timer] = {}

    def timer(
        self,
        name: str,
        tags: Mapping[str, str],
        percentiles: Sequence[float] = (),
        buckets: Sequence[float] | None = None,
    ) -> Timer:
        tags = {str(k): str(v) for k, v in tags.items()}
        key = (name, frozenset(tags.items()))
        tag_keys = tuple(sorted(tags))
        wanted_percentiles = tuple(float(p) for p in percentiles)
        wanted_buckets = tuple(float(b) for b in buckets) if buckets else tuple(Histogram.DEFAULT_BUCKETS)
        with self._lock:
            family = self._families.get(name)
            if family is None:
                family = _TimerFamily(
                    histogram=Histogram(
                        _prometheus_name(name),
                        f"Timer for {name}",
                        labelnames=tag_keys,
                        buckets=wanted_buckets,
                        registry=self.collector_registry,
                    ),
                    tag_keys=tag_keys,
                    percentiles=wanted_percentiles,
                    buckets=wanted_buckets,
                )
                self._families[name] = family
            elif family.tag_keys != tag_keys:
                raise ValueError(
                    f"Timer '{name}' is registered with tag keys {list(family.tag_keys)}, got {list(tag_keys)}"
                )
            elif family.percentiles != wanted_percentiles:
                raise ValueError(
                    f"Timer '{name}' is registered with percentiles {list(family.percentiles)}, "
                    f"got {list(wanted_percentiles)}"
                )
            elif family.buckets != wanted_buckets:
                raise ValueError(
                    f"Timer '{name}' is registered with buckets {list(family.buckets)}, got {list(wanted_buckets)}"
                )

            existing = self._timers.get(key)
            if existing is not None:
                return existing

            created = Timer(name, tags, family.histogram, family.percentiles)
            self._timers[key] = created
            return created

    def timers(self, name: str | None = None) -> list[Timer]:
        with self._lock:
            return [t for (n, _), t in self._timers.items() if name is None or n == name]

    def get(self, name: str) -> "RequiredSearch":
        return RequiredSearch(self, name)

    def find(self, name: str) -> "Search":
        return Search(self, name)

    def generate_latest(self) -> bytes:
        return generate_latest(self.collector_registry)

    def _match(self, name: str, tags: Mapping[str, str]) -> Timer | None:
        for timer in self.timers(name):
            if all(timer.tags.get(k) == v for k, v in tags.items()):
                return timer
        return None


class Search:
    """Fluent lookup by meter name plus a subset of tags; returns None on a miss."""

    def __init__(self, registry: MeterRegistry, name: str) -> None:
        self._registry = registry
        self._name = name
        self._tags: dict[str, str] = {}

    def tag(self, key: str, value: str) -> "Search":
        self._tags[key] = str(value)
        return self

    def tags(self, *key_values: str) -> "Search":
        if len(key_values) % 2:
            raise ValueError("tags() expects an even number of key/value arguments")
        for key, value in _pairs(key_values):
            self.tag(key, value)
        return self

    def timer(self) -> Timer | None:
        return self._registry._match(self._name, self._tags)


class RequiredSearch(Search):
    def timer(self) -> Timer:
        found = self._registry._match(self._name, self._tags)
        if found is None:
            raise MeterNotFoundError(self._name, self._tags)
        return found


def _pairs(values: Sequence[str]) -> Iterable[tuple[str, str]]:
    it = iter(values)
    return zip(it, it)
