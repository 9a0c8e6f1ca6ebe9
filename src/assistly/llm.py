"""
Text completion client and prompt templates.

This module provides:
- CompletionClient: AsyncOpenAI client for an OpenAI-compatible chat
  completion endpoint (Groq by default)
- System prompt construction from the assembled context

ENVIRONMENT VARIABLES USED:
- COMPLETION_API_KEY: API key for the completion endpoint
- COMPLETION_BASE_URL: Base URL of the endpoint
- GENERATION_MODEL: Model used to answer questions
- REQUEST_TIMEOUT_SECONDS: Request timeout
"""

from typing import Any, Dict, Optional

from loguru import logger
from openai import AsyncOpenAI

from assistly.models import ContextBlock
from assistly.utils import AssistlyError, get_config, require, Timer


class GenerationFailedError(AssistlyError):
    """Raised when the completion service errors."""
    pass


# Sampling settings tuned for short, factual answers
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 400
DEFAULT_TOP_P = 0.9


SYSTEM_PROMPT_TEMPLATE = """You are a friendly, professional support assistant for Assistly. Your goal is to provide quick, easy-to-read answers to customers.

RESPONSE STYLE GUIDELINES:
1. Keep answers CONCISE: 2-4 sentences maximum.
2. Use bullet points ONLY when listing multiple rules/steps (max 4-5 bullets).
3. Otherwise, prefer short paragraphs over bullet lists.
4. Always include all critical information needed to answer the question.
5. If referencing multiple policies, SUMMARIZE the rules clearly - do NOT copy full paragraphs.
6. Write in a friendly, conversational tone as if helping a colleague.
7. Never make up information not in the context.

OPTIONAL REFERENCE:
- Add a "Learn more" or "See Section X" line at the end only if helpful.
- Example: "See Section 4 of the company policy for details."

{instructions}"""

CONTEXT_INSTRUCTIONS = """KNOWLEDGE BASE CONTEXT:
{context}

Provide a concise, friendly answer (2-4 sentences). Use bullets only if listing multiple items."""

NO_CONTEXT_INSTRUCTIONS = """No relevant information was found in the knowledge base.

Politely say: "I couldn't find specific information about that in our knowledge base. Could you please rephrase your question or contact support for assistance?\""""


def build_system_prompt(context: ContextBlock) -> str:
    """
    Build the system prompt for one question.

    Args:
        context: Assembled context block

    Returns:
        str: Prompt instructing the model to answer from the context, or to
        say that nothing was found when the block is empty
    """
    if context.has_context:
        instructions = CONTEXT_INSTRUCTIONS.format(context=context.text)
    else:
        instructions = NO_CONTEXT_INSTRUCTIONS
    return SYSTEM_PROMPT_TEMPLATE.format(instructions=instructions)


class CompletionClient:
    """Chat completion client for an OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.groq.com/openai/v1",
        timeout: float = 30.0,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        top_p: float = DEFAULT_TOP_P,
        client: Optional[Any] = None
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.client = client or AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            timeout=timeout
        )

        logger.info("Completion client initialized", model=model, base_url=base_url)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "CompletionClient":
        config = config or get_config()
        return cls(
            api_key=require(config, "COMPLETION_API_KEY"),
            model=config["GENERATION_MODEL"],
            base_url=config["COMPLETION_BASE_URL"],
            timeout=config["REQUEST_TIMEOUT_SECONDS"]
        )

    async def complete(self, system_prompt: str, user_message: str) -> str:
        """
        Generate an answer for the user message.

        Args:
            system_prompt: Instructions and context
            user_message: The user's question

        Returns:
            str: Generated text, "" when the model returned no content

        Raises:
            GenerationFailedError: If the API call fails or returns no choices
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]

        try:
            with Timer("llm_generation"):
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    top_p=self.top_p
                )
        except Exception as e:
            logger.error("Completion request failed", error=str(e), model=self.model)
            raise GenerationFailedError(f"Completion request failed: {str(e)}") from e

        if not response.choices:
            raise GenerationFailedError("No response choices returned from completion service")

        generated_text = response.choices[0].message.content or ""

        logger.info(
            "Completion generated",
            model=self.model,
            response_length=len(generated_text),
            tokens_used=getattr(getattr(response, "usage", None), "total_tokens", None)
        )
        return generated_text


# Global instance
_completion_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    """
    Get the global completion client, initializing if needed.

    Returns:
        CompletionClient: Configured client
    """
    global _completion_client
    if _completion_client is None:
        _completion_client = CompletionClient.from_config()
    return _completion_client
