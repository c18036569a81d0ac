"""
Rubric Evaluation Service
Scores a transcript against a room's criteria with a LangChain chat model.
"""

import logging
import time
from typing import Any, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI

from interview_rooms.core.exceptions import EvaluationAPIError
from interview_rooms.core.models import Criterion, EvaluationReport, Question
from interview_rooms.prompts.evaluation import build_evaluation_inputs, create_evaluation_prompt
from interview_rooms.utils.llm_retry import LLMAPIError, async_retry_llm_call
from interview_rooms.utils.logging_config import log_llm_call
from interview_rooms.utils.metrics import record_llm_tokens, track_llm_call

logger = logging.getLogger(__name__)

AGENT_NAME = "rubric_evaluator"


def _message_text(content: Any) -> str:
    """Chat model content is a string or a list of parts (Gemini may return parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


class EvaluationService:
    """
    Rubric evaluator.

    The prompt embeds the criteria (name, description, weight), the ordered
    questions and the transcript, and asks for a fixed-format report.
    """

    def __init__(self, llm: BaseChatModel, model_name: str = "unknown"):
        self.llm = llm
        self.model_name = model_name
        self.prompt = create_evaluation_prompt()
        logger.info(f"Initialized EvaluationService (model={model_name})")

    @async_retry_llm_call
    async def _invoke(self, messages):
        with track_llm_call(AGENT_NAME):
            return await self.llm.ainvoke(messages)

    async def evaluate(
        self,
        transcript: str,
        criteria: Sequence[Criterion],
        questions: Sequence[Question]
    ) -> EvaluationReport:
        """
        Run the scoring step.

        Raises:
            EvaluationAPIError: The model call failed (after rate-limit retries)
        """
        messages = self.prompt.format_messages(
            **build_evaluation_inputs(criteria, questions, transcript)
        )

        start = time.time()
        try:
            message = await self._invoke(messages)
        except LLMAPIError as e:
            raise EvaluationAPIError(e.status_code, message=f"Evaluation API request failed: {e}") from e
        latency_ms = (time.time() - start) * 1000

        text = _message_text(message.content)
        if not text.strip():
            raise EvaluationAPIError(message="Evaluation API returned an empty report")

        usage = getattr(message, "usage_metadata", None) or {}
        metadata = getattr(message, "response_metadata", None) or {}
        prompt_tokens = int(usage.get("input_tokens", 0) or 0)
        completion_tokens = int(usage.get("output_tokens", 0) or 0)
        total_tokens = int(usage.get("total_tokens", 0) or (prompt_tokens + completion_tokens))

        report = EvaluationReport(
            text=text,
            model=metadata.get("model_name") or self.model_name,
            completion_id=getattr(message, "id", None) or "unknown",
            finish_reason=str(metadata.get("finish_reason") or "unknown"),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            created=int(time.time()),
        )

        record_llm_tokens(AGENT_NAME, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        log_llm_call(
            logger,
            agent_name=AGENT_NAME,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            latency_ms=latency_ms,
            model=report.model,
        )
        return report


def create_evaluation_service(
    gemini_api_key: str,
    model_name: str = "gemini-2.5-flash",
    max_output_tokens: int = 1000,
    temperature: float = 0.7
) -> EvaluationService:
    """
    Factory function to create the Gemini-backed evaluator.

    Args:
        gemini_api_key: Google Gemini API key
        model_name: Gemini model name
        max_output_tokens: Report length cap
        temperature: Sampling temperature
    """
    llm = ChatGoogleGenerativeAI(
        model=model_name,
        temperature=temperature,
        google_api_key=gemini_api_key,
        max_output_tokens=max_output_tokens
    )
    return EvaluationService(llm, model_name=model_name)
