"""Tests for the generation client and the Gemini backend."""
import asyncio
import json
import sys
import time
from pathlib import Path

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from generation_client import (
    GeminiBackend,
    GenerationClient,
    GenerationError,
    MalformedResponseError,
    TransientServiceError,
)


class ScriptedBackend:
    """Replays a list of replies; exceptions in the list are raised."""

    def __init__(self, *replies, delay: float = 0.0):
        self.replies = list(replies)
        self.delay = delay
        self.prompts = []

    def complete(self, model, prompt, schema=None):
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_client(backend, **kwargs):
    kwargs.setdefault("sleep", RecordingSleep())
    return GenerationClient(backend, model="test-model", **kwargs)


class TestCoalescing:
    """Tests for in-flight request sharing."""

    def test_concurrent_identical_requests_share_one_call(self):
        backend = ScriptedBackend('{"answer": 42}', delay=0.05)
        client = make_client(backend)

        async def scenario():
            return await asyncio.gather(
                client.generate("same prompt", {"type": "OBJECT"}),
                client.generate("same prompt", {"type": "OBJECT"}),
            )

        first, second = asyncio.run(scenario())
        assert first == second == {"answer": 42}
        assert len(backend.prompts) == 1
        assert client.in_flight == 0

    def test_different_schema_is_a_different_request(self):
        backend = ScriptedBackend("{}")
        client = make_client(backend)

        async def scenario():
            await asyncio.gather(
                client.generate("p", {"type": "OBJECT"}),
                client.generate("p", None),
            )

        asyncio.run(scenario())
        assert len(backend.prompts) == 2

    def test_finished_requests_are_not_reused(self):
        backend = ScriptedBackend("[1]")
        client = make_client(backend)

        async def scenario():
            await client.generate("p")
            await client.generate("p")

        asyncio.run(scenario())
        assert len(backend.prompts) == 2

    def test_shared_failure_reaches_every_caller(self):
        backend = ScriptedBackend(GenerationError("boom"), delay=0.05)
        client = make_client(backend)

        async def scenario():
            return await asyncio.gather(
                client.generate("p"), client.generate("p"), return_exceptions=True,
            )

        results = asyncio.run(scenario())
        assert all(isinstance(r, GenerationError) for r in results)
        assert len(backend.prompts) == 1
        assert client.in_flight == 0

    def test_signature_includes_model(self):
        a = GenerationClient(ScriptedBackend("{}"), model="a")
        b = GenerationClient(ScriptedBackend("{}"), model="b")
        assert a.signature("p") != b.signature("p")
        assert a.signature("p").endswith("::no-schema")


class TestRetry:
    """Tests for bounded retry with backoff."""

    def test_retries_transient_errors_with_doubling_delay(self):
        backend = ScriptedBackend(
            TransientServiceError("429"), TransientServiceError("quota"), '{"ok": true}',
        )
        sleep = RecordingSleep()
        client = make_client(backend, max_retries=2, base_delay=2.0, sleep=sleep)

        assert asyncio.run(client.generate("p")) == {"ok": True}
        assert len(backend.prompts) == 3
        assert sleep.delays == [2.0, 4.0]

    def test_gives_up_after_bound(self):
        backend = ScriptedBackend(TransientServiceError("503"))
        client = make_client(backend, max_retries=2)

        with pytest.raises(TransientServiceError):
            asyncio.run(client.generate("p"))
        assert len(backend.prompts) == 3

    def test_other_errors_are_not_retried(self):
        backend = ScriptedBackend(GenerationError("bad request"))
        client = make_client(backend, max_retries=2)

        with pytest.raises(GenerationError):
            asyncio.run(client.generate("p"))
        assert len(backend.prompts) == 1

    def test_broken_body_from_backend_is_retried(self):
        backend = ScriptedBackend(
            requests.exceptions.ChunkedEncodingError("connection broken mid-body"), '{"ok": true}',
        )
        client = make_client(backend, max_retries=2)

        assert asyncio.run(client.generate("p")) == {"ok": True}
        assert len(backend.prompts) == 2

    def test_broken_body_exhausting_retries_is_a_generation_error(self):
        backend = ScriptedBackend(requests.exceptions.ChunkedEncodingError("connection broken mid-body"))
        client = make_client(backend, max_retries=1)

        with pytest.raises(TransientServiceError):
            asyncio.run(client.generate("p"))
        assert len(backend.prompts) == 2

    def test_other_request_errors_become_generation_errors(self):
        backend = ScriptedBackend(requests.exceptions.InvalidURL("bad url"))
        client = make_client(backend, max_retries=2)

        with pytest.raises(GenerationError) as exc_info:
            asyncio.run(client.generate("p"))
        assert not isinstance(exc_info.value, TransientServiceError)
        assert len(backend.prompts) == 1

    def test_malformed_reply_is_not_retried(self):
        backend = ScriptedBackend("I cannot help with that")
        client = make_client(backend, max_retries=2)

        with pytest.raises(MalformedResponseError):
            asyncio.run(client.generate("p"))
        assert len(backend.prompts) == 1


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, params=None, json=None, timeout=None):
        self.requests.append({"url": url, "params": params, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestGeminiBackend:
    """Tests for the REST backend."""

    def make_backend(self, session):
        return GeminiBackend(api_key="k", api_url="https://example.test/{model}:generate", timeout=5, session=session)

    def test_sends_prompt_and_schema(self):
        session = FakeSession(FakeResponse(body=gemini_body('{"a": 1}')))
        text = self.make_backend(session).complete("m1", "hello", {"type": "OBJECT"})

        assert text == '{"a": 1}'
        sent = session.requests[0]
        assert sent["url"] == "https://example.test/m1:generate"
        assert sent["params"] == {"key": "k"}
        assert sent["timeout"] == 5
        assert sent["json"]["contents"][0]["parts"][0]["text"] == "hello"
        assert sent["json"]["generationConfig"]["responseSchema"] == {"type": "OBJECT"}
        assert sent["json"]["generationConfig"]["responseMimeType"] == "application/json"

    def test_rate_limit_is_transient(self):
        session = FakeSession(FakeResponse(status_code=429, text="Too many requests"))
        with pytest.raises(TransientServiceError):
            self.make_backend(session).complete("m", "p")

    def test_server_error_is_transient(self):
        session = FakeSession(FakeResponse(status_code=503, text="unavailable"))
        with pytest.raises(TransientServiceError):
            self.make_backend(session).complete("m", "p")

    def test_client_error_is_not_transient(self):
        session = FakeSession(FakeResponse(status_code=400, text="invalid argument"))
        with pytest.raises(GenerationError) as exc_info:
            self.make_backend(session).complete("m", "p")
        assert not isinstance(exc_info.value, TransientServiceError)

    def test_connection_error_is_transient(self):
        session = FakeSession(error=requests.ConnectionError("failed to fetch"))
        with pytest.raises(TransientServiceError):
            self.make_backend(session).complete("m", "p")

    def test_broken_body_is_transient(self):
        session = FakeSession(error=requests.exceptions.ChunkedEncodingError("connection broken mid-body"))
        with pytest.raises(TransientServiceError):
            self.make_backend(session).complete("m", "p")

    def test_other_request_error_is_not_transient(self):
        session = FakeSession(error=requests.exceptions.TooManyRedirects("redirect loop"))
        with pytest.raises(GenerationError) as exc_info:
            self.make_backend(session).complete("m", "p")
        assert not isinstance(exc_info.value, TransientServiceError)

    def test_empty_candidates_is_malformed(self):
        session = FakeSession(FakeResponse(body={"candidates": []}))
        with pytest.raises(MalformedResponseError):
            self.make_backend(session).complete("m", "p")

    def test_missing_api_key(self):
        backend = GeminiBackend(api_key="", session=FakeSession())
        with pytest.raises(GenerationError):
            backend.complete("m", "p")
