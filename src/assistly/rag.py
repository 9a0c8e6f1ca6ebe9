"""
End-to-end answer pipeline.

KnowledgeAssistant ties the retrieval core to the completion service:

1. Retrieve and select candidates for the question
2. Assemble the bounded, source-tagged context block
3. Build the system prompt and ask the completion service for an answer
4. Validate the answer and substitute a fallback where required

Query embedding failures propagate (RetrievalFailedError). Search and
generation failures degrade so that the caller always gets an answer.
"""

from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from assistly.context import DEFAULT_MAX_CONTEXT_LENGTH, assemble_context
from assistly.llm import CompletionClient, GenerationFailedError, build_system_prompt, get_completion_client
from assistly.models import AnswerResult, ContextBlock, MatchCandidate, SourceReference
from assistly.normalizer import extract_key_terms
from assistly.retriever import Retriever
from assistly.utils import get_config, sanitize_for_logging, Timer
from assistly.validator import (
    NOT_FOUND_FALLBACK,
    TECHNICAL_ISSUE_FALLBACK,
    ValidationThresholds,
    repair_answer,
    validate_answer,
)


def to_source_references(candidates: List[MatchCandidate]) -> List[SourceReference]:
    return [
        SourceReference(id=c.id, source=c.source, title=c.title, similarity=c.similarity)
        for c in candidates
    ]


class KnowledgeAssistant:
    """Answers questions from the knowledge base."""

    def __init__(
        self,
        retriever: Retriever,
        completion_client: CompletionClient,
        top_k: int = 15,
        max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH,
        thresholds: Optional[ValidationThresholds] = None
    ):
        self.retriever = retriever
        self.completion_client = completion_client
        self.top_k = top_k
        self.max_context_length = max_context_length
        self.thresholds = thresholds or ValidationThresholds()

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "KnowledgeAssistant":
        config = config or get_config()
        return cls(
            retriever=Retriever.from_config(config),
            completion_client=get_completion_client(),
            top_k=config["RETRIEVAL_TOP_K"],
            max_context_length=config["MAX_CONTEXT_LENGTH"],
            thresholds=ValidationThresholds.from_config(config)
        )

    async def prepare_context(self, query: str) -> Tuple[List[MatchCandidate], ContextBlock]:
        """
        Retrieve candidates and assemble the context block for a query.

        Args:
            query: User question

        Returns:
            Tuple[List[MatchCandidate], ContextBlock]: (selected candidates, context)

        Raises:
            RetrievalFailedError: If the query could not be embedded
        """
        candidates = await self.retriever.retrieve(query, self.top_k)
        context = assemble_context(candidates, self.max_context_length)

        logger.info(
            "Context prepared",
            sources_used=context.sources_used,
            context_length=len(context.text),
            truncated=context.truncated
        )
        return candidates, context

    async def answer(self, query: str) -> AnswerResult:
        """
        Answer a question.

        Args:
            query: User question

        Returns:
            AnswerResult: Final answer with sources and validation outcome

        Raises:
            RetrievalFailedError: If the query could not be embedded
        """
        logger.info("Answering question", query=sanitize_for_logging(query, 100))

        with Timer("answer_pipeline"):
            candidates, context = await self.prepare_context(query)
            sources = to_source_references(candidates)
            system_prompt = build_system_prompt(context)

            try:
                raw_answer = await self.completion_client.complete(system_prompt, query)
            except GenerationFailedError as e:
                logger.warning("Generation failed, returning fallback answer",
                               error=str(e), has_context=context.has_context)
                return AnswerResult(
                    answer=TECHNICAL_ISSUE_FALLBACK if context.has_context else NOT_FOUND_FALLBACK,
                    has_context=context.has_context,
                    sources=sources,
                    repaired=True,
                    generation_failed=True
                )

            report = validate_answer(
                raw_answer,
                context.has_context,
                extract_key_terms(query),
                self.thresholds
            )
            final_answer = repair_answer(raw_answer, report, context.has_context)

        return AnswerResult(
            answer=final_answer,
            original_answer=raw_answer,
            has_context=context.has_context,
            sources=sources,
            issues=report.issues,
            repaired=final_answer != raw_answer.strip()
        )


# Global instance
_assistant: Optional[KnowledgeAssistant] = None


def get_assistant() -> KnowledgeAssistant:
    """
    Get the global assistant, initializing its collaborators if needed.

    Returns:
        KnowledgeAssistant: Configured assistant
    """
    global _assistant
    if _assistant is None:
        _assistant = KnowledgeAssistant.from_config()
    return _assistant
