"""Run-scoped timeline and step log.

The timeline is the human-readable narrative of a run (Thought / Action /
Observation / Final Answer); the step log records one structured entry per
collaborator call. Both are append-only and owned by a single run.
"""

from __future__ import annotations

import hashlib
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, TypeVar

from velopass.domain import StepLogEntry, TimelineEntry, TimelineKind
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="velopass/telemetry")

T = TypeVar("T")


def hash_args(args: Mapping[str, Any]) -> str:
    """Stable 16-hex-char fingerprint of a call's arguments (key order does not matter)."""
    payload = json.dumps(args, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunTelemetry:
    """Append-only narrative and tool-call log for one run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._timeline: List[TimelineEntry] = []
        self._steps: List[StepLogEntry] = []

    @property
    def timeline(self) -> List[TimelineEntry]:
        """Snapshot of the narrative so far."""
        return list(self._timeline)

    @property
    def step_log(self) -> List[StepLogEntry]:
        """Snapshot of the step log so far."""
        return list(self._steps)

    def log(self, kind: TimelineKind, content: str) -> TimelineEntry:
        entry = TimelineEntry(kind=kind, content=content, timestamp=_now_iso())
        self._timeline.append(entry)
        logger.debug("[%s] %s: %s", self.run_id, kind.value, content)
        return entry

    def thought(self, content: str) -> TimelineEntry:
        return self.log(TimelineKind.THOUGHT, content)

    def action(self, content: str) -> TimelineEntry:
        return self.log(TimelineKind.ACTION, content)

    def observation(self, content: str) -> TimelineEntry:
        return self.log(TimelineKind.OBSERVATION, content)

    def final_answer(self, content: str) -> TimelineEntry:
        return self.log(TimelineKind.FINAL_ANSWER, content)

    def call(self, tool_name: str, func: Callable[..., T], **kwargs: Any) -> T:
        """Invoke a collaborator, recording latency and outcome; exceptions propagate unchanged."""
        start = time.perf_counter()
        try:
            result = func(**kwargs)
        except Exception as exc:
            self._record_step(tool_name, kwargs, start, success=False, error=str(exc))
            raise
        self._record_step(tool_name, kwargs, start, success=True)
        return result

    def tool(self, tool_name: str, func: Callable[..., T]) -> Callable[..., T]:
        """Bind `func` so every keyword call to it is recorded under `tool_name`."""
        def tracked(**kwargs: Any) -> T:
            return self.call(tool_name, func, **kwargs)
        return tracked

    def _record_step(
        self,
        tool_name: str,
        args: Mapping[str, Any],
        start: float,
        *,
        success: bool,
        error: str | None = None,
    ) -> None:
        latency_ms = round((time.perf_counter() - start) * 1000, 3)
        self._steps.append(
            StepLogEntry(
                index=len(self._steps) + 1,
                tool_name=tool_name,
                args_fingerprint=hash_args(args),
                latency_ms=latency_ms,
                success=success,
                error=error,
            )
        )
        if not success:
            logger.warning("Tool %s failed after %.1fms: %s", tool_name, latency_ms, error)
