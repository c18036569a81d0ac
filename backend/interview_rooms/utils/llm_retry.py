"""
LLM Retry Utilities

Classifies LLM transport failures and retries rate-limited calls with exponential backoff.
Only HTTP 429 responses are retried; every other failure surfaces immediately so the
evaluation pipeline never re-runs on its own.
"""

import logging
from typing import Optional, TypeVar, Callable
from functools import wraps

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
    after_log,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class LLMAPIError(Exception):
    """General LLM API error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LLMRateLimitError(LLMAPIError):
    """Raised when LLM API rate limit is exceeded (429)"""
    pass


class LLMTimeoutError(LLMAPIError):
    """Raised when LLM API call times out"""
    pass


# 3 attempts with exponential backoff: 2s, 4s
llm_retry_config = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(LLMRateLimitError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    after=after_log(logger, logging.INFO),
    reraise=True,
)


def extract_status_code(exc: BaseException) -> Optional[int]:
    """
    Best-effort HTTP status code of a provider exception.

    Provider SDKs disagree on where they keep it: ``status_code`` (OpenAI, httpx),
    ``code`` (google-api-core) or ``response.status_code``.
    """
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def classify_llm_error(exc: Exception) -> LLMAPIError:
    """Map an arbitrary provider exception to an LLMAPIError subclass."""
    if isinstance(exc, LLMAPIError):
        return exc

    status_code = extract_status_code(exc)
    error_msg = str(exc).lower()

    if status_code == 429 or "429" in error_msg or "rate limit" in error_msg or "resource exhausted" in error_msg:
        return LLMRateLimitError(f"Rate limit exceeded: {exc}", status_code=status_code or 429)
    if isinstance(exc, TimeoutError) or "timeout" in error_msg or "timed out" in error_msg:
        return LLMTimeoutError(f"Request timed out: {exc}", status_code=status_code)
    return LLMAPIError(f"API error: {exc}", status_code=status_code)


def async_retry_llm_call(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator for async LLM calls: classifies failures, retries rate limits.

    Example:
        @async_retry_llm_call
        async def call_llm_async(messages):
            return await llm.ainvoke(messages)
    """
    @retry(**llm_retry_config)
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            classified = classify_llm_error(e)
            if isinstance(classified, LLMRateLimitError):
                logger.warning(f"Rate limit exceeded in {func.__name__}: {e}")
            else:
                logger.error(f"LLM API error in {func.__name__}: {e}")
            if classified is e:
                raise
            raise classified from e

    return wrapper
