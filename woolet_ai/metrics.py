"""Prometheus metrics for the Woolet AI core.

Counts provider attempts, failures and fallbacks, digest outcomes and chat
turns, and exposes them as a /metrics endpoint.  Uses a lightweight custom
collector instead of prometheus_client; metrics are thread-safe in-process
counters and histograms.
"""

import threading
from collections import defaultdict

from fastapi import APIRouter, Response

_lock = threading.Lock()

LabelKey = tuple[tuple[str, str], ...]

_counters: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)

_histogram_sums: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)
_histogram_counts: dict[str, dict[LabelKey, int]] = defaultdict(
    lambda: defaultdict(int),
)

# Model calls run for seconds to tens of seconds.
LATENCY_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
_histogram_buckets: dict[str, dict[LabelKey, list[int]]] = defaultdict(
    lambda: defaultdict(lambda: [0] * len(LATENCY_BUCKETS)),
)


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _counters[name][key] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _histogram_sums[name][key] += value
        _histogram_counts[name][key] += 1
        buckets = _histogram_buckets[name][key]
        for i, bound in enumerate(LATENCY_BUCKETS):
            if value <= bound:
                buckets[i] += 1


def counter_value(name: str, labels: dict[str, str]) -> float:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        return _counters.get(name, {}).get(key, 0.0)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histogram_sums.clear()
        _histogram_counts.clear()
        _histogram_buckets.clear()


def _format_labels(label_pairs: LabelKey) -> str:
    if not label_pairs:
        return ""
    parts = [f'{k}="{v}"' for k, v in label_pairs]
    return "{" + ",".join(parts) + "}"


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, label_map in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for label_pairs, value in sorted(label_map.items()):
                lines.append(f"{name}{_format_labels(label_pairs)} {value}")

        for name in sorted(_histogram_sums.keys()):
            lines.append(f"# TYPE {name} histogram")
            for label_pairs in sorted(_histogram_sums[name].keys()):
                base_lbl = _format_labels(label_pairs)
                buckets = _histogram_buckets[name][label_pairs]
                cumulative = 0
                for i, bound in enumerate(LATENCY_BUCKETS):
                    cumulative += buckets[i]
                    bucket_labels: LabelKey = tuple(
                        sorted({**dict(label_pairs), "le": str(bound)}.items())
                    )
                    lines.append(f"{name}_bucket{_format_labels(bucket_labels)} {cumulative}")
                inf_labels: LabelKey = tuple(sorted({**dict(label_pairs), "le": "+Inf"}.items()))
                count = _histogram_counts[name][label_pairs]
                lines.append(f"{name}_bucket{_format_labels(inf_labels)} {count}")
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {count}")

    lines.append("")
    return "\n".join(lines)


# -- Convenience helpers --


def record_provider_attempt(
    provider: str, purpose: str, outcome: str, latency_s: float
) -> None:
    labels = {"provider": provider, "purpose": purpose}
    inc_counter("woolet_provider_attempts_total", {**labels, "outcome": outcome})
    observe_histogram("woolet_provider_duration_seconds", labels, latency_s)


def record_provider_fallback(from_provider: str, purpose: str) -> None:
    inc_counter(
        "woolet_provider_fallbacks_total",
        {"from_provider": from_provider, "purpose": purpose},
    )


def record_digest(kind: str, outcome: str) -> None:
    inc_counter("woolet_digest_requests_total", {"kind": kind, "outcome": outcome})


def record_chat_turn(outcome: str, model_calls: int, tool_calls: int) -> None:
    inc_counter("woolet_chat_turns_total", {"outcome": outcome})
    if model_calls:
        inc_counter("woolet_chat_model_calls_total", {}, float(model_calls))
    if tool_calls:
        inc_counter("woolet_chat_tool_calls_total", {}, float(tool_calls))


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
