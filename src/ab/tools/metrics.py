"""In-process metrics for tool executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

__all__ = ["MetricsCollector", "ToolMetric"]


@dataclass(slots=True)
class ToolMetric:
    tool: str
    latency_ms: int
    input_size: int
    output_size: int
    success: bool
    error: Optional[str] = None
    file_count: Optional[int] = None


@dataclass(slots=True)
class _ToolStats:
    calls: int = 0
    failures: int = 0
    total_latency_ms: int = 0


@dataclass
class MetricsCollector:
    """Accumulate tool call metrics for the summary appended to agent replies."""

    records: List[ToolMetric] = field(default_factory=list)

    def record(self, metric: ToolMetric) -> None:
        self.records.append(metric)

    def reset(self) -> None:
        self.records.clear()

    def summary(self) -> Dict[str, Any]:
        by_tool: Dict[str, _ToolStats] = {}
        for metric in self.records:
            stats = by_tool.setdefault(metric.tool, _ToolStats())
            stats.calls += 1
            stats.total_latency_ms += metric.latency_ms
            if not metric.success:
                stats.failures += 1
        total = len(self.records)
        successes = sum(1 for metric in self.records if metric.success)
        return {
            "total_calls": total,
            "success_rate": (successes / total) if total else 1.0,
            "avg_latency_ms": (sum(metric.latency_ms for metric in self.records) / total) if total else 0.0,
            "by_tool": {
                name: {
                    "calls": stats.calls,
                    "failures": stats.failures,
                    "avg_latency_ms": stats.total_latency_ms / stats.calls,
                }
                for name, stats in sorted(by_tool.items())
            },
        }

    def summary_string(self) -> str:
        summary = self.summary()
        if not summary["total_calls"]:
            return "No tool calls recorded."
        lines = [
            f"Tool calls: {summary['total_calls']} "
            f"(success rate {summary['success_rate'] * 100:.0f}%, avg {summary['avg_latency_ms']:.0f}ms)"
        ]
        for name, stats in summary["by_tool"].items():
            failures = f", {stats['failures']} failed" if stats["failures"] else ""
            lines.append(f"  - {name}: {stats['calls']} call(s){failures}, avg {stats['avg_latency_ms']:.0f}ms")
        return "\n".join(lines)
