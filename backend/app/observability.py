from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

logger = logging.getLogger("recruitment_pipeline")

METRIC_PREFIX = "recruitment_pipeline"


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_4xx: int
    requests_5xx: int
    total_latency_ms: float


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_4xx = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._by_route_status: dict[tuple[str, int], int] = {}
        self._transitions: dict[str, int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if 400 <= status_code < 500:
                self._requests_4xx += 1
            elif status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_transition(self, operation: str) -> None:
        with self._lock:
            self._transitions[operation] = self._transitions.get(operation, 0) + 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_4xx=self._requests_4xx,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            f"# HELP {METRIC_PREFIX}_requests_total Total HTTP requests",
            f"# TYPE {METRIC_PREFIX}_requests_total counter",
            f"{METRIC_PREFIX}_requests_total {snap.requests_total}",
            f"# HELP {METRIC_PREFIX}_requests_4xx_total Total 4xx HTTP requests",
            f"# TYPE {METRIC_PREFIX}_requests_4xx_total counter",
            f"{METRIC_PREFIX}_requests_4xx_total {snap.requests_4xx}",
            f"# HELP {METRIC_PREFIX}_requests_5xx_total Total 5xx HTTP requests",
            f"# TYPE {METRIC_PREFIX}_requests_5xx_total counter",
            f"{METRIC_PREFIX}_requests_5xx_total {snap.requests_5xx}",
            f"# HELP {METRIC_PREFIX}_request_avg_latency_ms Average request latency ms",
            f"# TYPE {METRIC_PREFIX}_request_avg_latency_ms gauge",
            f"{METRIC_PREFIX}_request_avg_latency_ms {avg_latency:.2f}",
            f"# HELP {METRIC_PREFIX}_candidate_transitions_total Candidate lifecycle operations",
            f"# TYPE {METRIC_PREFIX}_candidate_transitions_total counter",
        ]
        with self._lock:
            for operation, count in sorted(self._transitions.items()):
                lines.append(
                    f'{METRIC_PREFIX}_candidate_transitions_total{{operation="{operation}"}} {count}'
                )
            for (route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    f"{METRIC_PREFIX}_route_requests_total"
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def route_label(request: Request) -> str:
    # Route template rather than the concrete path.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        route = route_label(request)
        metrics.record(route=route, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s path=%s route=%s status=%s latency_ms=%.2f",
            request.method,
            request.url.path,
            route,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        route = route_label(request)
        metrics.record(route=route, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            request.url.path,
            latency_ms,
        )
        raise
