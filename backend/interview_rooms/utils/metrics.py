"""
Metrics Collection and Monitoring

Provides Prometheus-style metrics for the session runtime and the evaluation pipeline.
"""

import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge

from interview_rooms.utils.llm_retry import LLMRateLimitError, LLMTimeoutError, classify_llm_error


# Session Metrics
active_sessions = Gauge(
    "interview_rooms_active_sessions",
    "Number of interview sessions currently recording"
)

sessions_started_total = Counter(
    "interview_rooms_sessions_started_total",
    "Total number of interview sessions started"
)

sessions_finished_total = Counter(
    "interview_rooms_sessions_finished_total",
    "Total number of interview sessions that left the running state",
    ["outcome"]  # outcome: completed, failed, abandoned
)

question_advances_total = Counter(
    "interview_rooms_question_advances_total",
    "Total question advances",
    ["trigger"]  # trigger: timer, manual
)

session_duration_seconds = Histogram(
    "interview_rooms_session_duration_seconds",
    "Interview session duration in seconds",
    buckets=(60, 300, 600, 900, 1200, 1800, 2400, 3000)  # 1m to 50m
)

recording_size_bytes = Histogram(
    "interview_rooms_recording_size_bytes",
    "Size of the combined session recording",
    buckets=(1e3, 1e5, 1e6, 1e7, 5e7, 1e8, 5e8)
)


# LLM Metrics
llm_requests_total = Counter(
    "interview_rooms_llm_requests_total",
    "Total number of LLM API requests",
    ["agent_name", "status"]  # status: success, error, rate_limited, timeout
)

llm_latency_seconds = Histogram(
    "interview_rooms_llm_latency_seconds",
    "LLM API call latency in seconds",
    ["agent_name"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

llm_tokens_total = Counter(
    "interview_rooms_llm_tokens_total",
    "Total tokens consumed",
    ["agent_name", "token_type"]  # token_type: prompt, completion, total
)


# Transcription Metrics
transcription_requests_total = Counter(
    "interview_rooms_transcription_requests_total",
    "Total transcription requests",
    ["status"]  # status: success, error
)

transcription_duration_seconds = Histogram(
    "interview_rooms_transcription_duration_seconds",
    "Transcription duration in seconds",
    buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)
)


# Evaluation Pipeline Metrics
evaluations_total = Counter(
    "interview_rooms_evaluations_total",
    "Total evaluation pipeline runs",
    ["status"]  # status: success, transcription_error, evaluation_error, storage_error
)

evaluation_writes_total = Counter(
    "interview_rooms_evaluation_writes_total",
    "Participant record writes by the evaluation pipeline",
    ["mode"]  # mode: update, create, fallback, failed
)


# WebSocket Metrics
websocket_connections_total = Counter(
    "interview_rooms_websocket_connections_total",
    "Total WebSocket connections",
    ["endpoint", "status"]  # status: connected, disconnected, rejected
)

websocket_messages_total = Counter(
    "interview_rooms_websocket_messages_total",
    "Total WebSocket messages",
    ["endpoint", "direction"]  # direction: sent, received
)


# Utility Functions

@contextmanager
def track_llm_call(agent_name: str):
    """
    Context manager to track LLM API call metrics.

    Example:
        with track_llm_call("rubric_evaluator"):
            result = await llm.ainvoke(messages)
    """
    start_time = time.time()
    status = "success"

    try:
        yield
    except Exception as e:
        classified = classify_llm_error(e)
        if isinstance(classified, LLMRateLimitError):
            status = "rate_limited"
        elif isinstance(classified, LLMTimeoutError):
            status = "timeout"
        else:
            status = "error"
        raise
    finally:
        duration = time.time() - start_time
        llm_requests_total.labels(agent_name=agent_name, status=status).inc()
        llm_latency_seconds.labels(agent_name=agent_name).observe(duration)


@contextmanager
def track_transcription():
    """Context manager to track transcription request metrics."""
    start_time = time.time()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        transcription_requests_total.labels(status=status).inc()
        transcription_duration_seconds.observe(time.time() - start_time)


def record_llm_tokens(agent_name: str, prompt_tokens: int = 0, completion_tokens: int = 0):
    """
    Record LLM token usage.

    Example:
        record_llm_tokens("rubric_evaluator", prompt_tokens=1500, completion_tokens=300)
    """
    if prompt_tokens > 0:
        llm_tokens_total.labels(agent_name=agent_name, token_type="prompt").inc(prompt_tokens)

    if completion_tokens > 0:
        llm_tokens_total.labels(agent_name=agent_name, token_type="completion").inc(completion_tokens)

    total_tokens = prompt_tokens + completion_tokens
    if total_tokens > 0:
        llm_tokens_total.labels(agent_name=agent_name, token_type="total").inc(total_tokens)


def record_session_finished(outcome: str, duration_seconds: float = None):
    """
    Record a session leaving the running state.

    Example:
        record_session_finished("completed", duration_seconds=612.4)
    """
    sessions_finished_total.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        session_duration_seconds.observe(duration_seconds)
