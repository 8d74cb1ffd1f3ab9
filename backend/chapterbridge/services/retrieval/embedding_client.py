"""OpenAI-compatible embedding client."""

from __future__ import annotations

from typing import Iterable, List, Optional
import logging
import time

import httpx

logger = logging.getLogger("uvicorn.error")

_RETRYABLE_STATUS = {408, 409, 429}


class EmbeddingConfigError(ValueError):
    """Raised when embedding configuration is invalid."""


class EmbeddingServiceError(RuntimeError):
    """Raised when embedding service request fails."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class EmbeddingClient:
    """Simple sync client for embedding generation.

    Transient failures (transport errors, 408/409/429 and 5xx) are retried
    with exponential backoff: 1s, 2s, 4s ... up to ``max_retries`` attempts.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_sec: int = 60,
        max_retries: int = 3,
        dimensions: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=time.sleep,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.model = model or ""
        self.timeout_sec = int(timeout_sec)
        self.max_retries = max(1, int(max_retries))
        self.dimensions = dimensions
        self._transport = transport
        self._sleep = sleep
        if not self.base_url:
            raise EmbeddingConfigError("EMBEDDING_BASE_URL is not configured.")
        if not self.api_key:
            raise EmbeddingConfigError("EMBEDDING_API_KEY / OPENAI_API_KEY is not configured.")
        if not self.model:
            raise EmbeddingConfigError("EMBEDDING_MODEL is not configured.")

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        last_err: Optional[EmbeddingServiceError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return self._embed_once(texts)
            except EmbeddingServiceError as exc:
                last_err = exc
                if not exc.retryable or attempt >= self.max_retries:
                    break
                delay = 2 ** (attempt - 1)
                logger.warning(
                    "embedding-retry attempt=%d/%d delay=%ss error=%s",
                    attempt,
                    self.max_retries,
                    delay,
                    str(exc)[:180],
                )
                self._sleep(delay)
        raise last_err

    def _embed_once(self, texts: List[str]) -> List[List[float]]:
        normalized = [str(t or "").strip() for t in texts]
        payload = {
            "model": self.model,
            "input": normalized if len(normalized) > 1 else normalized[0],
            "encoding_format": "float",
        }
        if self.dimensions:
            payload["dimensions"] = int(self.dimensions)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/embeddings"

        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self._transport) as client:
                resp = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise EmbeddingServiceError(f"embedding request failed: {exc}", retryable=True) from exc

        if resp.status_code >= 400:
            detail = resp.text[:500]
            retryable = resp.status_code in _RETRYABLE_STATUS or resp.status_code >= 500
            raise EmbeddingServiceError(
                f"embedding service error: status={resp.status_code}, body={detail}",
                retryable=retryable,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise EmbeddingServiceError("embedding response is not valid JSON.") from exc

        data = body.get("data")
        if not isinstance(data, list):
            raise EmbeddingServiceError("embedding response has no data list.")

        # 按 index 排序，保证与输入顺序一致。
        ordered = sorted(
            (item for item in data if isinstance(item, dict)),
            key=lambda x: int(x.get("index", 0)),
        )
        vectors: List[List[float]] = []
        for item in ordered:
            vec = item.get("embedding")
            if not isinstance(vec, list) or not vec:
                raise EmbeddingServiceError("embedding vector is empty or malformed.")
            vectors.append([float(v) for v in vec])

        if len(vectors) != len(normalized):
            raise EmbeddingServiceError(
                f"embedding count mismatch: expected={len(normalized)}, got={len(vectors)}"
            )
        return vectors

    def embed_texts_batched(self, texts: List[str], batch_size: int = 50) -> List[List[float]]:
        if not texts:
            return []
        safe_batch = max(1, int(batch_size))
        all_vectors: List[List[float]] = []
        for batch in _chunked(texts, safe_batch):
            all_vectors.extend(self.embed_texts(batch))
        return all_vectors


def _chunked(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
