"""
Prompts Module
LangChain prompt templates for the rubric evaluator.
"""

from .evaluation import (
    build_evaluation_inputs,
    create_evaluation_prompt,
)


__all__ = [
    'build_evaluation_inputs',
    'create_evaluation_prompt',
]
