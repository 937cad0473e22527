"""Chat completion providers used by the two-stage orchestrator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional

from openai import OpenAI, OpenAIError

from userkb.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class CompletionProvider(ABC):
    @abstractmethod
    def stream_chat(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> Iterator[str]:
        """Yield reply fragments in order.

        Closing the returned iterator must release the underlying stream.

        Raises:
            ProviderUnavailable: if the call fails before or during streaming
        """

    @abstractmethod
    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 500,
        json_mode: bool = False,
    ) -> str:
        """Return the full reply text.

        Raises:
            ProviderUnavailable: if the call fails
        """


class OpenAICompletionProvider(CompletionProvider):
    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        stream_model: str = "gpt-4o",
        analysis_model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_retries: int = 2,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.client = client or OpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=max_retries
        )
        self.stream_model = stream_model
        self.analysis_model = analysis_model
        logger.info(
            "OpenAI completion provider initialized (stream=%s, analysis=%s, timeout=%.1fs)",
            stream_model,
            analysis_model,
            timeout,
        )

    def stream_chat(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> Iterator[str]:
        try:
            stream = self.client.chat.completions.create(
                model=model or self.stream_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except OpenAIError as exc:
            raise ProviderUnavailable(f"Chat stream failed to start: {exc}") from exc

        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except OpenAIError as exc:
            raise ProviderUnavailable(f"Chat stream interrupted: {exc}") from exc
        finally:
            stream.close()

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 500,
        json_mode: bool = False,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = self.client.chat.completions.create(
                model=model or self.analysis_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except OpenAIError as exc:
            raise ProviderUnavailable(f"Chat completion failed: {exc}") from exc
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
