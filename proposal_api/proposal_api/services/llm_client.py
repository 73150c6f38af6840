"""Anthropic Messages API adapter for proposal generation.

One ``AsyncAnthropic`` client is built per process in the app lifespan.  SDK
retries are disabled; a failed call surfaces immediately as
:class:`LLMError` and the caller decides what the client sees.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import anthropic

from proposal_api.services.prompts import get_prompt

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Provider call failed or returned an unusable response.

    ``user_message`` is set only when the provider supplied a message that
    is safe to show to an end user.
    """

    def __init__(self, detail: str, user_message: str | None = None) -> None:
        super().__init__(detail)
        self.user_message = user_message


def _provider_message(exc: anthropic.APIStatusError) -> str | None:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
    return None


class LLMClient:
    """Generates proposal text through the Anthropic SDK.

    Parameters
    ----------
    api_key:
        Provider API key.  Empty means unconfigured; :attr:`configured` is
        ``False`` and no SDK client is created.
    model, max_tokens, temperature, timeout:
        Passed through to every ``messages.create`` call.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.4,
        timeout: float = 60.0,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client: anthropic.AsyncAnthropic | None = None
        if api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=timeout,
                max_retries=0,
            )
            logger.info("LLM client initialised (model=%s, timeout=%.1fs)", model, timeout)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def generate_proposal(self, client_name: str, notes: str) -> str:
        """Return the generated proposal text for *client_name*.

        Inputs are expected to be sanitised by the caller.

        Raises
        ------
        LLMError
            On any provider failure, or when the completion has no text.
        """
        system_prompt = get_prompt("proposal_system")
        user_prompt = get_prompt("proposal_user")
        user = user_prompt.render(client_name=client_name, notes=notes)
        return await self._call_llm(system_prompt.content, user, prompt_version=user_prompt.version)

    async def _call_llm(self, system: str, user: str, *, prompt_version: str) -> str:
        if self._client is None:
            raise LLMError("LLM client is not configured")

        start = time.monotonic()
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APIStatusError as exc:
            logger.warning("LLM call failed: status=%d prompt=%s", exc.status_code, prompt_version)
            raise LLMError(f"Provider returned {exc.status_code}", _provider_message(exc)) from exc
        except anthropic.APIError as exc:
            logger.warning("LLM call failed: %s prompt=%s", type(exc).__name__, prompt_version)
            raise LLMError(str(exc)) from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        text = _extract_text(response.content)
        usage = getattr(response, "usage", None)
        logger.info(
            "LLM call complete: model=%s prompt=%s latency_ms=%d input_tokens=%s output_tokens=%s",
            self._model,
            prompt_version,
            latency_ms,
            getattr(usage, "input_tokens", None),
            getattr(usage, "output_tokens", None),
        )
        if not text.strip():
            raise LLMError("Provider returned an empty completion")
        return text

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def _extract_text(blocks: list[Any]) -> str:
    return "".join(getattr(block, "text", "") for block in blocks if getattr(block, "type", "text") == "text")
