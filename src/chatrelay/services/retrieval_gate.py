from __future__ import annotations

"""Two-stage web augmentation: classify the prompt, then fetch only if needed.

Both stages fail closed. Any error in ``decide`` means NO_SEARCH and any
error in ``retrieve`` means an empty snippet, so augmentation can degrade a
turn but never fail it.
"""

import asyncio
from enum import Enum
import logging
from typing import List, Optional, Protocol

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import SearchConfig
from .generation import GenerationBackend


logger = logging.getLogger("chatrelay.search")

ROUTER_INSTRUCTION = """
You are a routing agent.

Decide whether answering the user's question requires searching the internet.

Choose SEARCH if:
- Depends on current, recent, or changing information
- Involves real-world events, people, companies, prices, or news
- Asks for "latest", "current", "today", or similar

Choose NO_SEARCH if:
- Can be answered using general knowledge
- Is about programming, math, logic, or explanations
- Does not require up-to-date information

Respond with ONLY one word: SEARCH or NO_SEARCH.
Do not add any other text.
"""

STEERING_PREAMBLE = (
    "You are a helpful AI assistant. Use the web search results below to give an accurate, "
    "up-to-date answer. If they are not relevant, answer from general knowledge and say so.\n\n"
    "Web search results:\n"
)


class SearchDecision(str, Enum):
    SEARCH = "SEARCH"
    NO_SEARCH = "NO_SEARCH"


class SearchBackend(Protocol):
    def search(self, query: str) -> str: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=1,
        backoff_factor=0.3,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def parse_results(html: str, max_results: int = 5, max_chars: int = 2000) -> str:
    """Collect ``- title: snippet`` lines from a DuckDuckGo HTML result page."""

    soup = BeautifulSoup(html or "", "html.parser")
    results: List[str] = []
    for body in soup.select(".result__body")[:max_results]:
        title_el = body.select_one(".result__a")
        snippet_el = body.select_one(".result__snippet")
        title = title_el.get_text(strip=True) if title_el else ""
        snippet = snippet_el.get_text(strip=True) if snippet_el else ""
        if not title and not snippet:
            continue
        results.append(f"- {title}: {snippet}")
    if not results:
        return ""
    out = "\n".join(results)
    if len(out) > max_chars:
        out = out[:max_chars] + "..."
    return out


class DuckDuckGoSearch:
    def __init__(self, cfg: SearchConfig, session: Optional[requests.Session] = None) -> None:
        self._cfg = cfg
        self._session = session or _build_session()

    def search(self, query: str) -> str:
        try:
            resp = self._session.get(
                self._cfg.url,
                params={"q": query},
                headers={"User-Agent": self._cfg.user_agent},
                timeout=(3, self._cfg.timeout),
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as exc:
            logger.warning("web_search_failed", extra={"err": str(exc)})
            return ""
        try:
            return parse_results(resp.text, self._cfg.max_results, self._cfg.max_chars)
        except Exception as exc:
            logger.warning("web_search_parse_failed", extra={"err": str(exc)})
            return ""


class RetrievalGate:
    def __init__(
        self,
        backend: GenerationBackend,
        searcher: SearchBackend,
        decide_timeout: float = 8.0,
        search_timeout: float = 8.0,
    ) -> None:
        self._backend = backend
        self._searcher = searcher
        self._decide_timeout = decide_timeout
        self._search_timeout = search_timeout

    async def decide(self, prompt: str) -> SearchDecision:
        try:
            reply = await self._backend.generate_once(prompt, ROUTER_INSTRUCTION, timeout=self._decide_timeout)
        except Exception as exc:
            logger.info("search_decision_fallback", extra={"err": str(exc)})
            return SearchDecision.NO_SEARCH
        if (reply or "").strip().upper() == SearchDecision.SEARCH.value:
            return SearchDecision.SEARCH
        return SearchDecision.NO_SEARCH

    async def retrieve(self, prompt: str) -> str:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._searcher.search, prompt),
                timeout=self._search_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("web_search_timeout", extra={"timeout_s": self._search_timeout})
            return ""
        except Exception as exc:
            logger.warning("web_search_failed", extra={"err": str(exc)})
            return ""
        return result if isinstance(result, str) else ""

    async def augment(self, prompt: str) -> Optional[str]:
        """Return a steering instruction built from web results, or ``None``."""

        if await self.decide(prompt) is not SearchDecision.SEARCH:
            return None
        snippet = await self.retrieve(prompt)
        if not snippet.strip():
            return None
        return STEERING_PREAMBLE + snippet
