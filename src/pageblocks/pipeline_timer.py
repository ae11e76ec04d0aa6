# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Analysis stage timer for latency reporting and timeout diagnostics.

Created outside the render timeout scope so it survives cancellation and
can still describe which stage was running when a request was interrupted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

_STAGE_HINTS = {
    "rendering": "Page may be slow to load or keep long-polling connections open. Lower 'wait' or retry.",
    "segmentation": "Render tree is very large. Try a smaller viewport.",
    "geometry": "Block tree is unusually deep.",
    "reasoning": "Block tree is unusually large.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Track analysis stage transitions (rendering → segmentation → geometry → reasoning)."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End the running stage and start *name*."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End the running stage. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage_name: elapsed_ms}, including the running stage. Repeated stages accumulate."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round(result.get(s.name, 0.0) + s.elapsed_ms, 1)
        if self._current is not None:
            ms = round((now - self._current.start_ns) / 1e6, 1)
            result[self._current.name] = round(result.get(self._current.name, 0.0) + ms, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic for timeout errors."""
        now = time.monotonic_ns()
        completed = [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages]
        current = self.current_stage or "unknown"
        current_ms = round((now - self._current.start_ns) / 1e6, 1) if self._current else 0
        return {
            "error": "timeout",
            "completed_stages": completed,
            "timed_out_at": current,
            "timed_out_stage_ms": current_ms,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _STAGE_HINTS.get(stage, f"Timed out during '{stage}' stage.")
