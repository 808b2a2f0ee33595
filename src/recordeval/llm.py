"""HTTP evaluator client for OpenAI-compatible chat completion endpoints.

Sends the rendered prompt as a single user message and returns the text
of the first choice.  Transport problems are translated into the SDK's
``EvaluatorUnavailable`` / ``EvaluatorTimeout`` so callers never see
``httpx`` exceptions.
"""

from __future__ import annotations

import logging

import httpx

from recordeval.errors import EvaluatorTimeout, EvaluatorUnavailable
from recordeval.interfaces import Evaluator

logger = logging.getLogger(__name__)


class HttpEvaluator(Evaluator):
    """Evaluator backed by ``POST {base_url}/chat/completions``.

    Args:
        base_url: API root, e.g. ``http://localhost:4000/v1``
        model: model name sent in the request body and reported via
            :attr:`model_name`
        api_key: optional bearer token
        timeout: per-call timeout in seconds
        client: optional pre-built ``httpx.AsyncClient`` (tests inject one
            with a mock transport)
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def model_name(self) -> str:
        return self._model

    async def reply(self, prompt: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {
            "model": self._request_model(),
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self._base_url}/chat/completions",
                    json=body, headers=headers, timeout=self._timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        f"{self._base_url}/chat/completions",
                        json=body, headers=headers,
                    )
        except httpx.TimeoutException as exc:
            raise EvaluatorTimeout(f"Evaluator timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise EvaluatorUnavailable(f"Evaluator request failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning("Evaluator returned HTTP %d", response.status_code)
            raise EvaluatorUnavailable(f"Evaluator returned HTTP {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EvaluatorUnavailable("Evaluator returned a malformed envelope") from exc

        if not isinstance(content, str) or not content.strip():
            raise EvaluatorUnavailable("Evaluator returned an empty reply")
        return content

    def _request_model(self) -> str:
        """Model name without the compliance prefix, as the backend expects."""
        prefix, sep, rest = self._model.partition(":")
        return rest if sep and prefix == "hipaa" else self._model
