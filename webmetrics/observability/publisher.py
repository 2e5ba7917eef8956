from __future__ import annotations

from typing import Final, Mapping, Sequence

import structlog

from webmetrics.observability.registry import MeterRegistry, Timer

METRIC_HTTP_SERVER_REQUESTS: Final = "http.server.requests"
METRIC_HTTP_CLIENT_REQUESTS: Final = "http.client.requests"


class WebMetricsPublisher:
    """Submits request durations for one role (client or server) to the registry.

    Each role carries its own percentile list and SLO buckets, so configuring
    one role never changes the histogram of the other.
    """

    def __init__(
        self,
        registry: MeterRegistry,
        name: str,
        percentiles: Sequence[float] = (),
        slos: Sequence[float] = (),
    ) -> None:
        self.registry = registry
        self.name = name
        self.percentiles = tuple(percentiles)
        self.slos = tuple(slos)

    def publish(self, elapsed_s: float, tags: Mapping[str, str]) -> Timer | None:
        try:
            timer = self.registry.timer(
                self.name,
                tags,
                percentiles=self.percentiles,
                buckets=self.slos or None,
            )
            timer.record(elapsed_s)
        except Exception:
            # Recording must never break the request it observes.
            structlog.get_logger("metrics").exception("metrics_record_failed", metric=self.name, tags=dict(tags))
            return None
        return timer
