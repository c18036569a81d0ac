"""
Rubric Evaluation Prompts
Scores a whole interview transcript against the room's criteria.
Uses LangChain ChatPromptTemplate; the report format is fixed so scores can be read back.
"""

from typing import Any, Dict, Sequence

from langchain_core.prompts import ChatPromptTemplate, SystemMessagePromptTemplate, HumanMessagePromptTemplate

from interview_rooms.core.models import Criterion, Question


EVALUATION_SYSTEM = """You are an AI assistant specialized in evaluating interview performances."""

EVALUATION_HUMAN = """You are an expert interview coach evaluating an interview response.

### Evaluation Criteria:
{criteria_block}

### Interview Questions:
{questions_block}

### Candidate's Response:
"{transcript}"

### Evaluation Instructions:
Evaluate the candidate's response objectively based on the criteria above.

### Your Response Must Follow This Exact Format:

## Overall Score: [SCORE]/10
## CGPA: [CGPA]/10.0

## Detailed Evaluation:
{report_sections}"""

NO_CRITERIA = "No criteria available"

CRITERION_SECTION = """
### {index}. {name} - [SCORE]/{max_score}
**Strengths:**
- [List key strengths in bullet points]

**Areas for Improvement:**
- [List specific improvement areas in bullet points]

**Recommended Steps:**
- [Provide 2-3 actionable recommendations in bullet points]
"""


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def format_criteria(criteria: Sequence[Criterion]) -> str:
    if not criteria:
        return NO_CRITERIA
    return "\n".join(
        f"{i}. {c.name} - {c.description} (Weight: {_format_number(c.max_score)}%)"
        for i, c in enumerate(criteria, start=1)
    )


def format_questions(questions: Sequence[Question]) -> str:
    return "\n".join(f"Question {i}: {q.text}" for i, q in enumerate(questions, start=1))


def format_report_sections(criteria: Sequence[Criterion]) -> str:
    return "\n".join(
        CRITERION_SECTION.format(index=i, name=c.name, max_score=_format_number(c.max_score))
        for i, c in enumerate(criteria, start=1)
    )


def build_evaluation_inputs(
    criteria: Sequence[Criterion],
    questions: Sequence[Question],
    transcript: str
) -> Dict[str, Any]:
    """Template variables for create_evaluation_prompt()."""
    return {
        "criteria_block": format_criteria(criteria),
        "questions_block": format_questions(questions),
        "transcript": transcript,
        "report_sections": format_report_sections(criteria),
    }


def create_evaluation_prompt() -> ChatPromptTemplate:
    """
    Create prompt for rubric scoring of a full interview.

    Input variables:
        criteria_block: Numbered criteria with description and weight
        questions_block: "Question i: text" lines in presentation order
        transcript: Whole-session transcript
        report_sections: Per-criterion section skeletons the model must fill

    Returns:
        ChatPromptTemplate producing a system + user message pair
    """
    return ChatPromptTemplate.from_messages([
        SystemMessagePromptTemplate.from_template(EVALUATION_SYSTEM),
        HumanMessagePromptTemplate.from_template(EVALUATION_HUMAN)
    ])
