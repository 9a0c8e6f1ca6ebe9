"""FastAPI application entry point for the Assistly knowledge assistant.

This module provides:
- FastAPI app initialization
- Chat and health endpoints
- Error handling and request logging middleware
"""

import asyncio
import time
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from assistly import __version__
from assistly.embedder import LocalEmbedder, get_embedder
from assistly.models import ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from assistly.rag import KnowledgeAssistant, get_assistant
from assistly.retriever import RetrievalFailedError
from assistly.utils import AssistlyError, ConfigurationError, get_current_timestamp, initialize_app, sanitize_for_logging

# Initialize logging and configuration
initialize_app()

app = FastAPI(
    title="Assistly Knowledge Assistant",
    description="Question answering over the Assistly knowledge base",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite development server
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Request/Response logging and timing middleware
@app.middleware("http")
async def logging_and_timing_middleware(request: Request, call_next):
    """Log requests and responses with timing information."""
    start_time = time.time()
    request_id = str(uuid.uuid4())[:8]

    logger.info(
        "Incoming request",
        method=request.method,
        url=str(request.url),
        request_id=request_id,
        client_ip=request.client.host if request.client else "unknown"
    )

    request.state.request_id = request_id

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            url=str(request.url),
            error=str(e),
            error_type=type(e).__name__,
            processing_time_ms=(time.time() - start_time) * 1000,
            request_id=request_id
        )
        raise

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        processing_time_ms=(time.time() - start_time) * 1000,
        request_id=request_id
    )
    return response


def _error_response(request: Request, status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=getattr(request.state, 'request_id', None)
        ).dict()
    )


# Global exception handlers
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Handle configuration errors."""
    logger.error("Configuration error", error=str(exc))
    return _error_response(request, 500, "CONFIGURATION_ERROR", "System configuration error",
                           {"error": str(exc)})


@app.exception_handler(RetrievalFailedError)
async def retrieval_error_handler(request: Request, exc: RetrievalFailedError):
    """Handle failures to embed the user's question."""
    return _error_response(request, 500, "RETRIEVAL_FAILED",
                           "Unable to process your question right now. Please try again.",
                           {"error": str(exc)})


@app.exception_handler(AssistlyError)
async def assistant_error_handler(request: Request, exc: AssistlyError):
    """Handle any other knowledge assistant error."""
    logger.error("Assistant error", error=str(exc), error_type=type(exc).__name__)
    return _error_response(request, 500, "ASSISTANT_ERROR", "Error processing your request")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return _error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail),
                           {"status_code": exc.status_code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return _error_response(request, 422, "VALIDATION_ERROR", "Invalid request",
                           {"errors": [str(err.get("msg")) for err in exc.errors()]})


# Load the embedding model before serving so the first request does not pay for it
@app.on_event("startup")
async def startup_event():
    """Load the embedding model off the event loop."""
    embedder = get_embedder()
    try:
        await asyncio.to_thread(embedder.load)
    except AssistlyError as e:
        logger.error("Embedding model load failed at startup", model=embedder.model_name, error=str(e))
        raise
    logger.info("Startup completed", version=__version__, embedding_model=embedder.model_name)


@app.get("/")
async def root():
    """Root endpoint with basic service information."""
    return {
        "service": "Assistly Knowledge Assistant",
        "version": __version__,
        "endpoints": ["/chat", "/health", "/docs"]
    }


@app.post("/chat", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    http_request: Request,
    assistant: KnowledgeAssistant = Depends(get_assistant)
) -> ChatResponse:
    """
    Answer a user question from the knowledge base.

    Retrieval failures surface as 500 errors; search and generation failures
    are absorbed and produce a fallback answer.
    """
    request_id = getattr(http_request.state, 'request_id', None)

    logger.info(
        "Processing chat request",
        message_preview=sanitize_for_logging(request.message, 100),
        request_id=request_id
    )

    result = await assistant.answer(request.message)

    logger.info(
        "Chat request completed",
        has_context=result.has_context,
        sources=len(result.sources),
        issues=[issue.value for issue in result.issues],
        repaired=result.repaired,
        request_id=request_id
    )

    return ChatResponse(
        answer=result.answer,
        has_context=result.has_context,
        sources=result.sources,
        issues=result.issues,
        repaired=result.repaired,
        timestamp=get_current_timestamp()
    )


@app.get("/health", response_model=HealthResponse)
async def health_check(embedder: LocalEmbedder = Depends(get_embedder)) -> HealthResponse:
    """Report service status and whether the embedding model is loaded."""
    return HealthResponse(
        status="healthy",
        timestamp=get_current_timestamp(),
        embedding_model=embedder.model_name,
        model_loaded=embedder.is_loaded
    )
