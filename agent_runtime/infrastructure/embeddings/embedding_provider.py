from typing import List, Optional
from enum import Enum
import structlog
from pydantic import BaseModel
from langchain_core.embeddings import Embeddings
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

logger = structlog.get_logger(__name__)


class EmbeddingStatus(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class EmbeddingResult(BaseModel):
    """Outcome of one embedding request"""
    status: EmbeddingStatus
    vector: Optional[List[float]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == EmbeddingStatus.OK and bool(self.vector)


def is_rate_limit_error(error: BaseException) -> bool:
    """HTTP 429 from the provider, however the client library reports it"""

    for attr in ("status_code", "status", "http_status"):
        if getattr(error, attr, None) == 429:
            return True

    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True

    message = str(error).lower()
    return "rate limit" in message or "too many requests" in message


class EmbeddingProvider:
    """Wraps a langchain Embeddings model; never raises for provider errors"""

    def __init__(
        self,
        embeddings: Embeddings,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 10.0
    ):
        self.embeddings = embeddings
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def backoff(self):
        """Exponential wait capped at max_delay, plus up to base_delay of jitter"""
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay) + wait_random(0, self.base_delay)

    async def embed(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            return EmbeddingResult(status=EmbeddingStatus.FAILED, error="Empty text")

        vector: List[float] = []
        try:
            # Only rate limits are retried; other errors fail immediately
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=self.backoff(),
                retry=retry_if_exception(is_rate_limit_error),
                reraise=True,
            ):
                with attempt:
                    vector = await self.embeddings.aembed_query(text)
        except Exception as e:
            if is_rate_limit_error(e):
                logger.warning("Embedding rate limited", retries=self.max_retries, error=str(e))
                return EmbeddingResult(status=EmbeddingStatus.RATE_LIMITED, error=str(e))
            logger.error("Embedding generation failed", error=str(e))
            return EmbeddingResult(status=EmbeddingStatus.FAILED, error=str(e))

        return EmbeddingResult(status=EmbeddingStatus.OK, vector=[float(v) for v in vector])
