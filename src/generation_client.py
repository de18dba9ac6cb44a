"""
Client for the external question-generation / evaluation service.

GenerationClient adds two behaviours on top of a backend that performs one
blocking call:

- identical in-flight requests (model + prompt + schema) share one task,
  so concurrent callers cause a single service call;
- transient failures (rate limit, quota, connection, 5xx) are retried in a
  bounded loop with doubling delay. Anything else propagates at once.

A reply that is not parseable JSON raises MalformedResponseError and is not
retried.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import requests

import config
from question_decoder import parse_json_text

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = ("429", "quota", "failed to fetch", "resource_exhausted", "unavailable")
TRANSIENT_REQUEST_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)


class GenerationError(Exception):
    """The generation service could not produce a usable reply."""


class TransientServiceError(GenerationError):
    """Rate limit, quota or network failure; worth retrying."""


class MalformedResponseError(GenerationError):
    """The service replied, but not with parseable JSON."""


class GenerationBackend(Protocol):
    """One blocking call to the service, returning the reply text."""

    def complete(self, model: str, prompt: str, schema: Optional[dict] = None) -> str:
        ...


def is_transient_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


def classify_request_error(error: requests.RequestException) -> GenerationError:
    """Map a requests failure onto the generation error hierarchy.

    Network-level failures (connection, timeout, a body cut off mid-read)
    are transient; anything else requests raises is a plain GenerationError.
    """
    if isinstance(error, TRANSIENT_REQUEST_ERRORS):
        return TransientServiceError(f"Generation service unreachable: {error}")
    return GenerationError(f"Generation request failed: {error}")


class GeminiBackend:
    """Backend for the Gemini generateContent REST endpoint."""

    def __init__(
        self,
        api_key: str = config.GEMINI_API_KEY,
        api_url: str = config.GENERATION_API_URL,
        timeout: float = config.GENERATION_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_request(self, prompt: str, schema: Optional[dict] = None) -> dict:
        generation_config: dict[str, Any] = {"responseMimeType": "application/json"}
        if schema is not None:
            generation_config["responseSchema"] = schema
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

    def complete(self, model: str, prompt: str, schema: Optional[dict] = None) -> str:
        """Send one generateContent request.

        Returns:
            The concatenated text parts of the first candidate

        Raises:
            TransientServiceError: Rate limit, quota, 5xx or network failure
            MalformedResponseError: Reply body is not the expected shape
            GenerationError: Any other service error
        """
        if not self.api_key:
            raise GenerationError("GEMINI_API_KEY is not set")

        url = self.api_url.format(model=model)
        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json=self.build_request(prompt, schema),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise classify_request_error(e) from e

        if response.status_code != 200:
            detail = f"Generation service error {response.status_code}: {response.text[:200]}"
            if response.status_code == 429 or response.status_code >= 500 or is_transient_message(response.text):
                raise TransientServiceError(detail)
            raise GenerationError(detail)

        try:
            result = response.json()
        except ValueError as e:
            raise MalformedResponseError("Generation service returned a non-JSON body") from e

        text = ""
        candidates = result.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(part["text"] for part in parts if "text" in part)
            if not text and candidate.get("finishReason") == "SAFETY":
                raise GenerationError("Response blocked by the service's safety settings")
        if not text:
            raise MalformedResponseError("Generation service returned no text")
        return text


class GenerationClient:
    """Coalescing, retrying front end over a GenerationBackend."""

    def __init__(
        self,
        backend: GenerationBackend,
        model: str = config.GENERATION_MODEL,
        max_retries: int = config.GENERATION_MAX_RETRIES,
        base_delay: float = config.GENERATION_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep
        self._in_flight: dict[str, asyncio.Future] = {}
        self.calls = 0

    def signature(self, prompt: str, schema: Optional[dict] = None) -> str:
        """Coalescing key for a request."""
        schema_part = json.dumps(schema, sort_keys=True) if schema is not None else "no-schema"
        return f"{self.model}::{prompt}::{schema_part}"

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def generate(self, prompt: str, schema: Optional[dict] = None) -> Any:
        """Run a request and return the parsed JSON reply.

        Callers issuing an identical request while one is in flight await
        the same task. The entry is removed once that task settles.

        Raises:
            GenerationError: (or a subclass) when no usable reply is obtained
        """
        key = self.signature(prompt, schema)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, prompt, schema))
            self._in_flight[key] = task
        else:
            logger.debug("Coalescing identical generation request")
        return await asyncio.shield(task)

    async def _run(self, key: str, prompt: str, schema: Optional[dict]) -> Any:
        try:
            text = await self._call_with_retry(prompt, schema)
        finally:
            self._in_flight.pop(key, None)

        try:
            return parse_json_text(text)
        except ValueError as e:
            raise MalformedResponseError(f"Unparseable generation reply: {e}") from e

    async def _complete(self, prompt: str, schema: Optional[dict]) -> str:
        try:
            return await asyncio.to_thread(self.backend.complete, self.model, prompt, schema)
        except requests.RequestException as e:
            raise classify_request_error(e) from e

    async def _call_with_retry(self, prompt: str, schema: Optional[dict]) -> str:
        attempt = 0
        while True:
            self.calls += 1
            try:
                return await self._complete(prompt, schema)
            except TransientServiceError as e:
                if attempt >= self.max_retries:
                    logger.warning("Generation failed after %d attempts: %s", attempt + 1, e)
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning("Transient generation failure (%s), retrying in %.1fs", e, delay)
                await self._sleep(delay)
                attempt += 1
