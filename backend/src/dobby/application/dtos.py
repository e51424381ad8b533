"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from dobby import __version__


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None  # type: ignore[type-arg]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    environment: str = "development"
    providers: dict[str, bool] = Field(default_factory=dict)


class ProviderHealthResponse(BaseModel):
    provider_id: str
    status: str
    configured: bool
    key_count: int
    current_key_index: int
    total_requests: int
    total_successes: int
    total_failures: int
    consecutive_failures: int
    success_rate: float
    latency_p50_ms: float
    latency_p95_ms: float
    latency_p99_ms: float
    last_error: str | None = None
    failures_by_kind: dict[str, int] = Field(default_factory=dict)


class RateLimiterStatsResponse(BaseModel):
    in_flight: int
    waiting: int
    max_concurrent: int
    available: int
    min_interval_ms: float
    total_dispatched: int


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    user_id: str | None = Field(None, max_length=128)
    include_history: bool = True
    provider: str | None = None


class ChatMetadata(BaseModel):
    provider: str
    model: str
    prompt_tokens: int = 0
    response_tokens: int = 0
    tokens_used: int = 0
    history_turns: int = 0


class ChatResponse(BaseModel):
    success: bool = True
    response: str
    metadata: ChatMetadata
