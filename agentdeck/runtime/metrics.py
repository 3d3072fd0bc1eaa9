from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .folding import ApiCallEntry, FoldedEntry


@dataclass(frozen=True, slots=True)
class ApiMetrics:
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cache_writes: int = 0
    total_cache_reads: int = 0
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, int | float]:
        return {
            "tokens_in": self.total_tokens_in,
            "tokens_out": self.total_tokens_out,
            "cache_writes": self.total_cache_writes,
            "cache_reads": self.total_cache_reads,
            "cost_usd": self.total_cost,
        }


def get_api_metrics(entries: Iterable[FoldedEntry]) -> ApiMetrics:
    """Sum usage over every API call entry; unknown figures count as zero."""

    tokens_in = 0
    tokens_out = 0
    cache_writes = 0
    cache_reads = 0
    cost = 0.0
    for entry in entries:
        if not isinstance(entry, ApiCallEntry):
            continue
        usage = entry.usage
        tokens_in += usage.tokens_in or 0
        tokens_out += usage.tokens_out or 0
        cache_writes += usage.cache_writes or 0
        cache_reads += usage.cache_reads or 0
        cost += usage.cost_usd or 0.0
    return ApiMetrics(
        total_tokens_in=tokens_in,
        total_tokens_out=tokens_out,
        total_cache_writes=cache_writes,
        total_cache_reads=cache_reads,
        total_cost=cost,
    )


def format_tokens(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}m"
    if n >= 1_000:
        return f"{n / 1_000:.1f}k"
    return str(n)


def render_metrics_line(metrics: ApiMetrics, *, show_cache: bool = True) -> str:
    parts = [
        f"tokens ↑{format_tokens(metrics.total_tokens_in)} ↓{format_tokens(metrics.total_tokens_out)}",
    ]
    if show_cache:
        parts.append(
            f"cache +{format_tokens(metrics.total_cache_writes)} →{format_tokens(metrics.total_cache_reads)}"
        )
    parts.append(f"cost ${metrics.total_cost:.4f}")
    return " | ".join(parts)
