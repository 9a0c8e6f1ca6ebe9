"""
Validation and repair of generated answers.

Detection and substitution are separate steps: validate_answer() reports the
quality issues found on an answer, repair_answer() decides which canned
fallback (if any) replaces it.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from assistly.models import ValidationIssue, ValidationReport
from assistly.normalizer import normalize_query
from assistly.utils import get_config


# Fallback answers
CONTEXT_AVAILABLE_FALLBACK = (
    "I found relevant information in our knowledge base, but I'm having trouble "
    "formulating a response. Please try rephrasing your question."
)
NOT_FOUND_FALLBACK = (
    "I couldn't find specific information about that in our knowledge base. "
    "Could you please rephrase your question or contact support for assistance?"
)
NEED_MORE_CONTEXT_FALLBACK = (
    "Based on the available information, I need more context to provide a "
    "complete answer. Could you please rephrase your question?"
)
TECHNICAL_ISSUE_FALLBACK = (
    "I found relevant information in our knowledge base, but I'm experiencing a "
    "technical issue. Please try asking your question again, or contact support "
    "for assistance."
)

REFUSAL_PATTERNS = [
    re.compile(r"AI fails", re.IGNORECASE),
    re.compile(r"I don['’]t know", re.IGNORECASE),
    re.compile(r"I cannot", re.IGNORECASE),
    re.compile(r"I['’]m unable to", re.IGNORECASE),
]


class ValidationThresholds(BaseModel):
    """Length and overlap limits used by validate_answer."""
    min_answer_length: int = Field(40, ge=0, description="Shorter answers are flagged when context existed")
    max_answer_length: int = Field(500, ge=1, description="Longer answers are flagged as too long")
    short_refusal_length: int = Field(50, ge=0, description="Refusals shorter than this are replaced")
    parroting_ratio: float = Field(0.5, ge=0.0, le=1.0, description="Key term share above which an answer parrots")
    parroting_max_tokens: int = Field(20, ge=1, description="Only answers with fewer tokens can parrot")

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "ValidationThresholds":
        config = config or get_config()
        return cls(
            min_answer_length=config["MIN_ANSWER_LENGTH"],
            max_answer_length=config["MAX_ANSWER_LENGTH"]
        )


def contains_refusal(text: str) -> bool:
    return any(pattern.search(text) for pattern in REFUSAL_PATTERNS)


def validate_answer(
    answer: Optional[str],
    has_context: bool,
    key_terms: Iterable[str] = (),
    thresholds: Optional[ValidationThresholds] = None
) -> ValidationReport:
    """
    Detect quality issues on a generated answer.

    Every check runs independently on the trimmed answer, so one answer can
    carry several issues.

    Args:
        answer: Raw answer text (None is treated as empty)
        has_context: Whether context was supplied to the completion service
        key_terms: Key terms extracted from the user's question
        thresholds: Validation limits, defaults to the standard values

    Returns:
        ValidationReport: Issues found plus the measured length and overlap
    """
    thresholds = thresholds or ValidationThresholds()
    text = answer.strip() if isinstance(answer, str) else ""
    length = len(text)

    issues: List[ValidationIssue] = []

    if length == 0:
        issues.append(ValidationIssue.EMPTY)

    if has_context and contains_refusal(text):
        issues.append(ValidationIssue.REFUSAL)
        if length < thresholds.short_refusal_length:
            issues.append(ValidationIssue.SHORT_REFUSAL)

    tokens = normalize_query(text).split()
    terms = {term.lower() for term in key_terms}
    overlap = sum(1 for token in tokens if token in terms) / len(tokens) if tokens else 0.0

    if overlap > thresholds.parroting_ratio and len(tokens) < thresholds.parroting_max_tokens:
        issues.append(ValidationIssue.KEYWORD_PARROTING)

    if has_context and length < thresholds.min_answer_length:
        issues.append(ValidationIssue.TOO_SHORT)

    if length > thresholds.max_answer_length:
        issues.append(ValidationIssue.TOO_LONG)

    if issues:
        logger.info(
            "Answer validation found issues",
            issues=[issue.value for issue in issues],
            answer_length=length,
            has_context=has_context
        )

    return ValidationReport(
        issues=issues,
        answer_length=length,
        token_count=len(tokens),
        keyword_overlap=overlap
    )


def repair_answer(answer: Optional[str], report: ValidationReport, has_context: bool) -> str:
    """
    Substitute a fallback answer where validation requires it.

    Only empty answers and short refusals are replaced; every other issue is
    reported but the trimmed answer is kept.
    """
    if report.has(ValidationIssue.EMPTY):
        return CONTEXT_AVAILABLE_FALLBACK if has_context else NOT_FOUND_FALLBACK

    if report.has(ValidationIssue.SHORT_REFUSAL):
        return NEED_MORE_CONTEXT_FALLBACK

    return answer.strip() if isinstance(answer, str) else ""
