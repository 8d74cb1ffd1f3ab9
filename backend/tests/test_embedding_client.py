import json

import httpx
import pytest

from chapterbridge.services.retrieval.embedding_client import (
    EmbeddingClient,
    EmbeddingConfigError,
    EmbeddingServiceError,
)


def _client(handler, **kwargs):
    return EmbeddingClient(
        base_url="https://embed.test/v1/",
        api_key="test-key",
        model="text-embedding-3-small",
        transport=httpx.MockTransport(handler),
        sleep=kwargs.pop("sleep", lambda s: None),
        **kwargs,
    )


def _ok(texts):
    data = [{"index": i, "embedding": [float(i), 1.0]} for i in range(len(texts))]
    # 故意倒序返回，客户端应按 index 排回
    return httpx.Response(200, json={"data": list(reversed(data))})


def test_config_required():
    with pytest.raises(EmbeddingConfigError):
        EmbeddingClient(base_url="", api_key="k", model="m")
    with pytest.raises(EmbeddingConfigError):
        EmbeddingClient(base_url="https://x", api_key="", model="m")


def test_payload_and_order():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        body = json.loads(request.content)
        seen["body"] = body
        return _ok(body["input"])

    vectors = _client(handler, dimensions=2).embed_texts(["a", " b "])
    assert vectors == [[0.0, 1.0], [1.0, 1.0]]
    assert seen["url"] == "https://embed.test/v1/embeddings"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["input"] == ["a", "b"]
    assert seen["body"]["dimensions"] == 2


def test_retries_transient_status_with_backoff():
    calls = []
    delays = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return _ok(["x"])

    vectors = _client(handler, sleep=delays.append).embed_texts(["x"])
    assert vectors == [[0.0, 1.0]]
    assert len(calls) == 3
    assert delays == [1, 2]


def test_gives_up_after_max_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, text="slow down")

    with pytest.raises(EmbeddingServiceError) as info:
        _client(handler, max_retries=3).embed_texts(["x"])
    assert info.value.retryable is True
    assert len(calls) == 3


def test_client_error_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, text="bad input")

    with pytest.raises(EmbeddingServiceError) as info:
        _client(handler).embed_texts(["x"])
    assert info.value.retryable is False
    assert len(calls) == 1


def test_count_mismatch():
    def handler(request):
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

    with pytest.raises(EmbeddingServiceError):
        _client(handler).embed_texts(["a", "b"])


def test_batched():
    sizes = []

    def handler(request):
        body = json.loads(request.content)
        texts = body["input"] if isinstance(body["input"], list) else [body["input"]]
        sizes.append(len(texts))
        return _ok(texts)

    vectors = _client(handler).embed_texts_batched([str(i) for i in range(5)], batch_size=2)
    assert len(vectors) == 5
    assert sizes == [2, 2, 1]
