# ABOUTME: Gateway adapters for the web, academic, social, and deep-research search backends.
# ABOUTME: Each adapter performs one HTTP request per call and raises for the gateway to classify.

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

import internal_configs as cfg
from call_gateway import FailureKind, GatewayFailure, IProviderAdapter, LlmRequest, SearchRequest
from research_models import SearchResult

logger = logging.getLogger(__name__)

ATOM_NAMESPACE = {"a": "http://www.w3.org/2005/Atom"}


@dataclass
class DeepSearchResponse:
    content: str
    sources: List[str] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)


class WebSearchProvider(IProviderAdapter):
    """Web search via the OpenRouter Responses API web plugin. Cited URLs become results."""

    def __init__(self, apiKey: str, model: str = cfg.config.WEB_SEARCH_MODEL,
                 endpoint: str = cfg.config.OPENROUTER_RESPONSES_ENDPOINT):
        self.name = cfg.WEB_PROVIDER_ID
        self.apiKey = apiKey
        self.model = model
        self.endpoint = endpoint

    def _buildPayload(self, request: SearchRequest) -> Dict:
        query = "Find recent, authoritative sources about: " + "; ".join(request.terms)
        return {
            "model": self.model,
            "input": [
                {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": query}]
                }
            ],
            "plugins": [{"id": "web", "max_results": request.maxResults}]
        }

    async def call(self, request: SearchRequest) -> List[SearchResult]:
        if not self.apiKey:
            raise GatewayFailure(FailureKind.AUTH_MISSING, self.name, "OPENROUTER_API_KEY is not set")

        logger.info(f"WebSearchProvider: live web search for {len(request.terms)} terms")
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {self.apiKey}",
                    "Content-Type": "application/json",
                },
                json=self._buildPayload(request)
            )
            response.raise_for_status()
            return self.parseResponse(response.json(), request.maxResults)

    def parseResponse(self, result: Dict, maxResults: int) -> List[SearchResult]:
        results: List[SearchResult] = []
        seenUrls = set()
        summary = ""
        for outputItem in result["output"]:
            # Skip reasoning/encrypted items, look for message types
            if outputItem.get("type") != "message":
                continue
            for part in outputItem.get("content", []):
                if part.get("type") not in ("text", "output_text"):
                    continue
                text = part.get("text", "")
                summary += text
                for annotation in part.get("annotations", []):
                    if annotation.get("type") != "url_citation":
                        continue
                    url = annotation.get("url", "")
                    if not url or url in seenUrls:
                        continue
                    seenUrls.add(url)
                    start, end = annotation.get("start_index"), annotation.get("end_index")
                    excerpt = text[start:end] if isinstance(start, int) and isinstance(end, int) else ""
                    results.append(SearchResult(
                        title=annotation.get("title") or url,
                        url=url,
                        snippet=(annotation.get("content") or excerpt)[:500],
                        provider=self.name
                    ))

        if not results and summary.strip():
            results.append(SearchResult(title="Web search summary", url="", snippet=summary.strip()[:1500],
                                        provider=self.name))
        return results[:maxResults]


class ArxivSearchProvider(IProviderAdapter):
    """Academic search against the arXiv Atom API."""

    def __init__(self, endpoint: str = cfg.config.ARXIV_QUERY_ENDPOINT, userAgent: str = cfg.config.USER_AGENT):
        self.name = cfg.ARXIV_PROVIDER_ID
        self.endpoint = endpoint
        self.userAgent = userAgent

    async def call(self, request: SearchRequest) -> List[SearchResult]:
        params = {
            "search_query": " OR ".join(f'all:"{term}"' for term in request.terms),
            "start": 0,
            "max_results": request.maxResults,
            "sortBy": "relevance",
        }
        async with httpx.AsyncClient(headers={"User-Agent": self.userAgent}) as client:
            response = await client.get(self.endpoint, params=params)
            response.raise_for_status()
            return self.parseFeed(response.text)

    def parseFeed(self, feedXml: str) -> List[SearchResult]:
        root = ET.fromstring(feedXml)
        results = []
        for entry in root.findall("a:entry", ATOM_NAMESPACE):
            title = " ".join((entry.findtext("a:title", default="", namespaces=ATOM_NAMESPACE) or "").split())
            summary = " ".join((entry.findtext("a:summary", default="", namespaces=ATOM_NAMESPACE) or "").split())

            link = None
            for candidate in entry.findall("a:link", ATOM_NAMESPACE):
                if candidate.attrib.get("type") == "text/html":
                    link = candidate.attrib.get("href")
                    break
            if not link:
                link = entry.findtext("a:id", default="", namespaces=ATOM_NAMESPACE) or ""

            results.append(SearchResult(
                title=title,
                url=link,
                snippet=summary[:500],
                provider=self.name,
                publishedAt=entry.findtext("a:published", default=None, namespaces=ATOM_NAMESPACE)
            ))
        return results


class RedditSearchProvider(IProviderAdapter):
    """Social search over the public Reddit JSON listing, restricted to the requested subreddits."""

    def __init__(self, baseUrl: str = cfg.config.REDDIT_BASE_URL, userAgent: str = cfg.config.USER_AGENT,
                 defaultSubreddits: Optional[List[str]] = None):
        self.name = cfg.REDDIT_PROVIDER_ID
        self.baseUrl = baseUrl.rstrip("/")
        self.userAgent = userAgent
        self.defaultSubreddits = defaultSubreddits or cfg.config.DEFAULT_SUBREDDITS

    @staticmethod
    def normalizeSubreddit(name: str) -> str:
        cleaned = name.strip().strip("/")
        if cleaned.lower().startswith("r/"):
            cleaned = cleaned[2:]
        return cleaned

    async def call(self, request: SearchRequest) -> List[SearchResult]:
        subreddits = [self.normalizeSubreddit(s) for s in (request.scopes or self.defaultSubreddits)]
        subreddits = [s for s in subreddits if s][:cfg.config.REDDIT_SUBREDDITS_LIMIT]
        path = f"/r/{'+'.join(subreddits)}/search.json" if subreddits else "/search.json"
        params = {
            "q": " OR ".join(request.terms),
            "restrict_sr": "1" if subreddits else "0",
            "sort": "relevance",
            "t": "year",
            "limit": request.maxResults,
        }
        async with httpx.AsyncClient(headers={"User-Agent": self.userAgent}, follow_redirects=True) as client:
            response = await client.get(self.baseUrl + path, params=params)
            response.raise_for_status()
            return self.parseListing(response.json())

    def parseListing(self, listing: Dict) -> List[SearchResult]:
        results = []
        for child in listing["data"]["children"]:
            post = child["data"]
            results.append(SearchResult(
                title=post.get("title", ""),
                url=self.baseUrl + post.get("permalink", ""),
                snippet=(post.get("selftext") or "")[:500],
                provider=f"{self.name}:r/{post.get('subreddit', '')}",
                score=post.get("score")
            ))
        return results


class PerplexityDeepSearch(IProviderAdapter):
    """Deep research through Perplexity chat completions. Citations become the source list."""

    def __init__(self, apiKey: str, model: str = cfg.config.DEEP_SEARCH_MODEL,
                 endpoint: str = cfg.config.PERPLEXITY_CHAT_ENDPOINT):
        self.name = cfg.DEEP_PROVIDER_ID
        self.apiKey = apiKey
        self.model = model
        self.endpoint = endpoint

    async def call(self, request: LlmRequest) -> DeepSearchResponse:
        if not self.apiKey:
            raise GatewayFailure(FailureKind.AUTH_MISSING, self.name, "PERPLEXITY_API_KEY is not set")

        payload = {
            "model": request.model or self.model,
            "messages": request.messages,
            "return_citations": True
        }
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {self.apiKey}",
                    "Content-Type": "application/json"
                },
                json=payload
            )
            response.raise_for_status()
            data = response.json()

        content = data["choices"][0]["message"].get("content") or ""
        if not content.strip():
            raise GatewayFailure(FailureKind.MALFORMED, self.name, "Deep search returned no content")
        sources = data.get("citations") or [r.get("url") for r in data.get("search_results", []) if r.get("url")]
        return DeepSearchResponse(content=content, sources=list(sources), usage=data.get("usage") or {})
