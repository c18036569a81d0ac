"""
Step timing for the post-session evaluation pipeline.

Each pipeline run gets a TimingSummary; every step is wrapped in
time_operation_in_summary() and the run is logged as one block on the
dedicated "timing" logger.
"""
import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Any
import json

timing_logger = logging.getLogger("timing")
timing_logger.setLevel(logging.INFO)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter(
    '%(asctime)s - TIMING - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
))
timing_logger.addHandler(console_handler)
timing_logger.propagate = False


@dataclass
class StepTiming:
    """One timed pipeline step."""
    name: str
    started: float
    duration: Optional[float] = None
    succeeded: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def finish(self, succeeded: bool, metadata: Optional[Dict[str, Any]] = None):
        self.duration = time.time() - self.started
        self.succeeded = succeeded
        if metadata:
            self.metadata.update(metadata)

    def describe(self) -> str:
        outcome = "" if self.succeeded else " FAILED"
        extra = f" | {json.dumps(self.metadata, default=str)}" if self.metadata else ""
        return f"{self.name}: {self.duration:.3f}s{outcome}{extra}"


class TimingSummary:
    """Timings of one evaluation run, keyed by the interview session id."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self.steps: List[StepTiming] = []
        self.start_time = time.time()

    @property
    def total_duration(self) -> float:
        return time.time() - self.start_time

    def breakdown(self) -> Dict[str, float]:
        return {s.name: round(s.duration, 3) for s in self.steps if s.duration is not None}

    def log_summary(self):
        failed = [s.name for s in self.steps if not s.succeeded]
        lines = [f"  - {name}: {seconds}s" for name, seconds in self.breakdown().items()]
        timing_logger.info(
            f"\n{'=' * 60}\n"
            f"EVALUATION TIMING - Session: {self.session_id}\n"
            f"Total: {self.total_duration:.3f}s" + (f" (failed at {failed[0]})" if failed else "") + "\n"
            + "\n".join(lines) +
            f"\n{'=' * 60}"
        )


@contextmanager
def time_operation_in_summary(
    summary: TimingSummary,
    operation_name: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Iterator[StepTiming]:
    """
    Time one pipeline step and record it on ``summary``, including steps that raise.

    Usage:
        summary = TimingSummary(session_id)
        with time_operation_in_summary(summary, "Transcription") as step:
            text = await transcriber.transcribe(data, filename, mime_type)
            step.metadata["chars"] = len(text)
    """
    step = StepTiming(operation_name, time.time())
    succeeded = False
    try:
        yield step
        succeeded = True
    finally:
        step.finish(succeeded, metadata)
        timing_logger.info(step.describe())
        summary.steps.append(step)
