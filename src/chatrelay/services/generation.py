"""Generation backend: streaming and one-shot calls to the chat model.

The backend talks to an OpenAI-compatible chat completions endpoint through
``langchain-openai``; by default that is Gemini's compatibility endpoint.
Streaming never raises for upstream problems. Failures surface as a final
``StreamChunk`` carrying ``error`` so the relay loop can report them and
still persist whatever text arrived first.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

from langchain_openai import ChatOpenAI

from ..config import GenerationConfig
from ..domain.chat_models import Turn
from ..domain.errors import UpstreamError, UpstreamTimeout


LOG = logging.getLogger("chatrelay.llm")

MISSING_KEY_MESSAGE = "AI API key not set"
INIT_FAILED_MESSAGE = "Failed to init AI client"


@dataclass(frozen=True)
class StreamChunk:
    text: str = ""
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class GenerationBackend(Protocol):
    def stream(self, turns: Sequence[Turn], instruction: str) -> AsyncIterator[StreamChunk]: ...

    async def generate_once(self, prompt: str, instruction: str, timeout: float) -> str: ...


def chunk_text(chunk: Any) -> str:
    """Extract plain text from a message or message chunk.

    Content is either a string or a list of content blocks; only text blocks
    contribute.
    """

    content = chunk.content if hasattr(chunk, "content") else chunk
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text") or ""))
        return "".join(parts)
    return ""


def _to_messages(turns: Sequence[Turn], instruction: str) -> List[Dict[str, str]]:
    msgs = [{"role": "system", "content": instruction}]
    msgs.extend(t.as_dict() for t in turns)
    return msgs


class ChatModelBackend:
    def __init__(
        self,
        cfg: GenerationConfig,
        llm_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._cfg = cfg
        self._factory = llm_factory or ChatOpenAI
        self._clients: Dict[str, Any] = {}

    @property
    def configured(self) -> bool:
        return self._cfg.configured

    def _llm(self, model: str) -> Any:
        client = self._clients.get(model)
        if client is None:
            LOG.info("Using chat model provider base_url=%s model=%s", self._cfg.base_url, model)
            client = self._factory(
                api_key=self._cfg.api_key,
                base_url=self._cfg.base_url,
                model=model,
                temperature=self._cfg.temperature,
                max_retries=0,
            )
            self._clients[model] = client
        return client

    async def stream(self, turns: Sequence[Turn], instruction: str) -> AsyncIterator[StreamChunk]:
        if not self._cfg.configured:
            yield StreamChunk(error=MISSING_KEY_MESSAGE)
            return
        try:
            llm = self._llm(self._cfg.model)
        except Exception as exc:
            LOG.warning("llm_init_failed", extra={"err": str(exc)})
            yield StreamChunk(error=INIT_FAILED_MESSAGE)
            return

        LOG.debug("llm_stream", extra={"model": self._cfg.model, "turns": len(turns)})
        try:
            async for piece in llm.astream(_to_messages(turns, instruction)):
                text = chunk_text(piece)
                if text:
                    yield StreamChunk(text=text)
        except Exception as exc:
            LOG.warning("llm_stream_failed", extra={"model": self._cfg.model, "err": str(exc)})
            yield StreamChunk(error=str(exc) or exc.__class__.__name__)

    async def generate_once(self, prompt: str, instruction: str, timeout: float) -> str:
        if not self._cfg.configured:
            raise UpstreamError(MISSING_KEY_MESSAGE)
        msgs = [
            {"role": "system", "content": instruction},
            {"role": "user", "content": prompt},
        ]
        try:
            llm = self._llm(self._cfg.router_model)
            res = await asyncio.wait_for(llm.ainvoke(msgs), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout() from exc
        except Exception as exc:
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc
        return chunk_text(res)
