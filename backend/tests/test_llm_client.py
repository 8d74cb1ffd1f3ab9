import asyncio
import json

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from chapterbridge.schemas.llm import IncrementalResponse, MatchingAllResponse
from chapterbridge.utils import openai_helper
from chapterbridge.utils.openai_helper import (
    CorrectionLoop,
    CorrectionState,
    LLMConfigError,
    LLMSchemaError,
    LLMServiceError,
    StructuredCompletionClient,
    parse_structured,
)

from conftest import FakeLLM, incremental_response

REQUEST = httpx.Request("POST", "https://llm.test/v1/chat/completions")


class TestCorrectionLoop:
    def test_initial_messages(self):
        loop = CorrectionLoop("sys", "user")
        assert loop.state == CorrectionState.INITIAL
        assert [m["role"] for m in loop.messages()] == ["system", "user"]

    def test_one_correction_then_give_up(self):
        loop = CorrectionLoop("sys", "user", max_corrections=1)
        assert loop.record_failure("{bad", "invalid JSON") is True
        assert loop.state == CorrectionState.CORRECTIVE
        messages = loop.messages()
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[2]["content"] == "{bad"
        assert "invalid JSON" in messages[3]["content"]

        assert loop.record_failure("{still bad", "invalid JSON") is False
        assert loop.state == CorrectionState.GAVE_UP
        assert loop.attempts == 2
        assert loop.corrections == 1
        assert not loop.active

    def test_success(self):
        loop = CorrectionLoop("sys", "user")
        loop.record_success()
        assert loop.state == CorrectionState.DONE
        assert loop.attempts == 1

    def test_zero_corrections(self):
        loop = CorrectionLoop("sys", "user", max_corrections=0)
        assert loop.record_failure("", "empty") is False
        assert loop.state == CorrectionState.GAVE_UP


class TestSchemas:
    def test_parse_incremental(self):
        parsed = parse_structured(json.dumps(incremental_response(3, 10, 12)), IncrementalResponse)
        assert parsed.result.to_start == 10
        assert parsed.result.needs_wider_window is False

    def test_start_after_end_rejected(self):
        with pytest.raises(LLMSchemaError):
            parse_structured(json.dumps(incremental_response(3, 12, 10)), IncrementalResponse)

    def test_confidence_out_of_range(self):
        with pytest.raises(LLMSchemaError):
            parse_structured(json.dumps(incremental_response(3, 10, 12, confidence=1.5)), IncrementalResponse)

    def test_invalid_json_keeps_raw(self):
        with pytest.raises(LLMSchemaError) as info:
            parse_structured("not json", IncrementalResponse)
        assert info.value.raw == "not json"

    def test_anchors_and_phrases_capped(self):
        raw = {
            "mappings": [
                {
                    "from_number": 1,
                    "to_start": 1,
                    "to_end": 2,
                    "confidence": 0.5,
                    "anchor_chapters": [1, 2, 3, 4, 5],
                    "matched_phrases": ["a", "b", "c", "d"],
                }
            ]
        }
        parsed = parse_structured(json.dumps(raw), MatchingAllResponse)
        assert len(parsed.mappings[0].anchor_chapters) == 3
        assert parsed.mappings[0].matched_phrases == ["a", "b", "c"]
        assert parsed.notes.global_confidence == 0.0


class TestStructuredCompletionClient:
    def test_missing_key(self):
        with pytest.raises(LLMConfigError):
            StructuredCompletionClient(api_key="", base_url="", model="gpt-4.1")

    def test_correction_succeeds_on_second_attempt(self):
        llm = FakeLLM(["{oops", incremental_response(1, 4, 5)])
        parsed, loop = asyncio.run(llm.complete_with_correction("sys", "user", IncrementalResponse))
        assert parsed.result.to_end == 5
        assert loop.attempts == 2
        assert loop.corrections == 1
        assert len(llm.calls) == 2
        assert llm.calls[1][2] == {"role": "assistant", "content": "{oops"}

    def test_correction_gives_up(self):
        llm = FakeLLM(["{oops", "{again"])
        with pytest.raises(LLMSchemaError):
            asyncio.run(llm.complete_with_correction("sys", "user", IncrementalResponse))
        assert len(llm.calls) == 2

    def test_transport_retry(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        class FlakyLLM(FakeLLM):
            async def _request(self, messages):
                self.calls.append(messages)
                if len(self.calls) < 3:
                    raise APIConnectionError(request=REQUEST)
                return json.dumps(incremental_response(1, 1, 2))

        monkeypatch.setattr(openai_helper.asyncio, "sleep", fake_sleep)
        llm = FlakyLLM([])
        parsed = asyncio.run(llm.complete("sys", "user", IncrementalResponse))
        assert parsed.result.to_start == 1
        assert delays == [1.5, 3.0]

    def test_client_error_not_retried(self):
        class RejectingLLM(FakeLLM):
            async def _request(self, messages):
                self.calls.append(messages)
                response = httpx.Response(400, request=REQUEST, json={"error": "bad"})
                raise APIStatusError("bad request", response=response, body=None)

        llm = RejectingLLM([])
        with pytest.raises(LLMServiceError):
            asyncio.run(llm.complete("sys", "user", IncrementalResponse))
        assert len(llm.calls) == 1
