"""
Pydantic data models for the Assistly knowledge assistant.

This module defines the knowledge base records read by the retrieval core,
the request-scoped value objects produced while answering a question, and
the request/response models of the HTTP surface.
"""

from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, Field, validator


# Enums for controlled vocabulary
class SourceType(str, Enum):
    """Origin of a knowledge item or search candidate."""
    DOC = "doc"
    FAQ = "faq"


class ValidationIssue(str, Enum):
    """Named quality defects detected on a generated answer."""
    EMPTY = "empty"                          # Nothing left after trimming
    REFUSAL = "refusal"                      # Refusal phrase although context existed
    SHORT_REFUSAL = "short_refusal"          # Refusal phrase in a very short answer
    KEYWORD_PARROTING = "keyword_parroting"  # Answer mostly repeats the query's key terms
    TOO_SHORT = "too_short"                  # Below the minimum length while context existed
    TOO_LONG = "too_long"                    # Over the concise-answer ceiling


# Knowledge base records (owned by the knowledge store, read-only here)
class Document(BaseModel):
    """A free-text document in the knowledge base."""
    id: str = Field(..., description="Unique document identifier")
    title: str = Field(..., description="Document title")
    content: str = Field(..., description="Full document text")
    embedding: Optional[List[float]] = Field(None, description="Embedding of the document text")

    @validator('content')
    def validate_content(cls, v):
        if not v or not v.strip():
            raise ValueError('Document content cannot be empty or only whitespace')
        return v

    @property
    def source(self) -> SourceType:
        return SourceType.DOC


class FaqEntry(BaseModel):
    """A question/answer pair in the knowledge base."""
    id: str = Field(..., description="Unique FAQ identifier")
    question: str = Field(..., description="FAQ question")
    answer: str = Field(..., description="FAQ answer")
    embedding: Optional[List[float]] = Field(None, description="Embedding of question and answer")

    @validator('question', 'answer')
    def validate_text(cls, v):
        if not v or not v.strip():
            raise ValueError('FAQ question and answer cannot be empty or only whitespace')
        return v

    @property
    def source(self) -> SourceType:
        return SourceType.FAQ


KnowledgeItem = Union[Document, FaqEntry]


class Chunk(BaseModel):
    """A bounded slice of a document's text."""
    text: str = Field(..., description="Chunk text, non-empty after trimming")
    index: int = Field(..., ge=0, description="0-based position within the document")


# Retrieval value objects (request scoped)
class MatchCandidate(BaseModel):
    """
    One knowledge item returned by the vector search service.

    Title, content and similarity are optional because the search service may
    return incomplete rows; the retriever decides which candidates are valid.
    """
    id: str = Field(..., description="Identifier of the matched knowledge item")
    source: SourceType = Field(SourceType.DOC, description="Whether the match is a document or an FAQ")
    title: Optional[str] = Field(None, description="Document title or FAQ question")
    content: Optional[str] = Field(None, description="Document content or FAQ answer")
    similarity: Optional[float] = Field(None, description="Cosine similarity against the query")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "faq_12",
                "source": "faq",
                "title": "How many paid leaves does an employee get?",
                "content": "Employees get 20 paid leaves per calendar year.",
                "similarity": 0.72
            }
        }


class ContextBlock(BaseModel):
    """Formatted, length-bounded context passed to the generation step."""
    segments: List[str] = Field(default_factory=list, description="Formatted segments in order")
    text: str = Field("", description="Final context text after joining and truncation")
    has_context: bool = Field(False, description="Whether the final text is non-blank")
    sources_used: int = Field(0, ge=0, description="Number of candidates formatted into the block")
    truncated: bool = Field(False, description="Whether the block was cut to the length limit")


class ValidationReport(BaseModel):
    """Result of checking a generated answer against the quality heuristics."""
    issues: List[ValidationIssue] = Field(default_factory=list, description="Detected defects")
    answer_length: int = Field(0, ge=0, description="Length of the trimmed answer")
    token_count: int = Field(0, ge=0, description="Number of tokens in the normalized answer")
    keyword_overlap: float = Field(0.0, ge=0.0, le=1.0, description="Share of answer tokens that are query key terms")

    def has(self, issue: ValidationIssue) -> bool:
        return issue in self.issues


class SourceReference(BaseModel):
    """A knowledge item that contributed to an answer."""
    id: str
    source: SourceType
    title: str
    similarity: float


class AnswerResult(BaseModel):
    """Final outcome of answering one question."""
    answer: str = Field(..., description="Answer returned to the user")
    original_answer: str = Field("", description="Raw text produced by the completion service")
    has_context: bool = Field(False, description="Whether the answer was grounded in retrieved context")
    sources: List[SourceReference] = Field(default_factory=list, description="Candidates used as context")
    issues: List[ValidationIssue] = Field(default_factory=list, description="Quality issues detected")
    repaired: bool = Field(False, description="Whether the answer text was substituted")
    generation_failed: bool = Field(False, description="Whether the completion service failed")


# API models
class ChatRequest(BaseModel):
    """Request model for the chat endpoint."""
    message: str = Field(..., max_length=4000, min_length=1, description="User question")

    @validator('message')
    def validate_message(cls, v):
        if not v or v.isspace():
            raise ValueError('Message cannot be empty or only whitespace')
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "message": "How many paid leaves does an employee get?"
            }
        }


class ChatResponse(BaseModel):
    """Response model for the chat endpoint."""
    answer: str = Field(..., description="Answer text")
    has_context: bool = Field(..., description="Whether knowledge base context was found")
    sources: List[SourceReference] = Field(default_factory=list, description="Knowledge items used")
    issues: List[ValidationIssue] = Field(default_factory=list, description="Quality issues detected")
    repaired: bool = Field(False, description="Whether a fallback answer was substituted")
    timestamp: str = Field(..., description="Response timestamp (ISO 8601, UTC)")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    embedding_model: str
    model_loaded: bool


class ErrorResponse(BaseModel):
    """Consistent error payload returned by the API."""
    error: str
    message: str
    details: Optional[dict] = None
    request_id: Optional[str] = None
