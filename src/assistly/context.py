"""
Context assembly for the completion prompt.

Formats selected candidates into source-tagged segments, joins them and
bounds the result to a maximum length, preferring to cut at a segment
boundary.
"""

from typing import List

from loguru import logger

from assistly.models import ContextBlock, MatchCandidate, SourceType


DEFAULT_MAX_CONTEXT_LENGTH = 6000

SEGMENT_SEPARATOR = "\n\n---\n\n"
BOUNDARY_MARKER = "\n---\n"

# A boundary cut is only used if it keeps more than this share of the limit
BOUNDARY_MIN_RATIO = 0.7

BOUNDARY_TRUNCATION_NOTICE = "\n\n[Additional context truncated for length]"
HARD_TRUNCATION_NOTICE = "... [Context truncated]"

SYNTHESIS_NOTE = (
    "\nNote: The above information comes from {count} different sources. "
    "Please synthesize this information to provide a comprehensive answer "
    "to the user's question."
)


def format_candidate(candidate: MatchCandidate, number: int) -> str:
    """
    Format one candidate as a context segment.

    Args:
        candidate: Selected candidate
        number: 1-based position in the context

    Returns:
        str: FAQ entries as question/answer, documents as title and content
    """
    if candidate.source == SourceType.FAQ:
        return f"FAQ Entry {number}:\nQuestion: {candidate.title}\nAnswer: {candidate.content}"
    return f"Document {number}: {candidate.title}\n\nContent:\n{candidate.content}"


def truncate_context(text: str, max_length: int = DEFAULT_MAX_CONTEXT_LENGTH) -> str:
    """
    Bound context text to ``max_length`` characters plus a truncation notice.

    The text is cut at ``max_length``. If the last segment boundary in the cut
    text lies beyond 70% of the limit, everything from that boundary on is
    dropped and a boundary notice appended; otherwise the hard cut is kept
    with a short notice.
    """
    if len(text) <= max_length:
        return text

    cut = text[:max_length]
    boundary = cut.rfind(BOUNDARY_MARKER)

    if boundary > max_length * BOUNDARY_MIN_RATIO:
        return cut[:boundary] + BOUNDARY_TRUNCATION_NOTICE
    return cut + HARD_TRUNCATION_NOTICE


def assemble_context(
    candidates: List[MatchCandidate],
    max_length: int = DEFAULT_MAX_CONTEXT_LENGTH
) -> ContextBlock:
    """
    Build the context block from selected candidates.

    Args:
        candidates: Selected candidates, in the order they should appear
        max_length: Maximum context length before truncation

    Returns:
        ContextBlock: Segments, final text and flags
    """
    segments: List[str] = [format_candidate(c, i + 1) for i, c in enumerate(candidates)]

    if len(candidates) > 1:
        segments.append(SYNTHESIS_NOTE.format(count=len(candidates)))

    joined = SEGMENT_SEPARATOR.join(segments)
    text = truncate_context(joined, max_length)
    truncated = text != joined

    if truncated:
        logger.info("Context truncated", original_length=len(joined), max_length=max_length)

    return ContextBlock(
        segments=segments,
        text=text,
        has_context=bool(text.strip()),
        sources_used=len(candidates),
        truncated=truncated
    )
