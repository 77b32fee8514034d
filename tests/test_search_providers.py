# ABOUTME: Tests response parsing for the web, arXiv, Reddit, and deep-research adapters.
# ABOUTME: Parsers are fed captured payload shapes; no network calls are made.

import unittest
import xml.etree.ElementTree as ET

from fakes import projectRoot  # noqa: F401

import internal_configs as cfg
from call_gateway import FailureKind, GatewayFailure, LlmRequest, SearchRequest
from search_providers import (
    ArxivSearchProvider,
    PerplexityDeepSearch,
    RedditSearchProvider,
    WebSearchProvider,
)

ARXIV_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>http://arxiv.org/abs/2401.00001v1</id>
    <published>2024-01-02T00:00:00Z</published>
    <title>Remote Work and
      Urban Office Demand</title>
    <summary>  We study office vacancy
      after 2020.  </summary>
    <link href="http://arxiv.org/abs/2401.00001v1" rel="alternate" type="text/html"/>
    <link href="http://arxiv.org/pdf/2401.00001v1" rel="related" type="application/pdf"/>
  </entry>
  <entry>
    <id>http://arxiv.org/abs/2401.00002v1</id>
    <title>Hybrid Schedules</title>
    <summary>Survey evidence.</summary>
  </entry>
</feed>
"""

REDDIT_LISTING = {
    "data": {
        "children": [
            {"data": {"title": "Downtown is empty", "permalink": "/r/RealEstate/comments/abc/downtown/",
                      "selftext": "Our building is half leased.", "subreddit": "RealEstate", "score": 42}},
            {"data": {"title": "Link post", "permalink": "/r/urbanplanning/comments/def/link/",
                      "selftext": None, "subreddit": "urbanplanning", "score": 3}},
        ]
    }
}

WEB_RESPONSE = {
    "output": [
        {"type": "reasoning", "summary": []},
        {
            "type": "message",
            "content": [{
                "type": "output_text",
                "text": "Vacancy hit a record in 2024.",
                "annotations": [
                    {"type": "url_citation", "url": "https://example.org/a", "title": "Report A",
                     "start_index": 0, "end_index": 7},
                    {"type": "url_citation", "url": "https://example.org/a", "title": "Report A again"},
                    {"type": "url_citation", "url": "https://example.org/b", "content": "Full excerpt"},
                ]
            }]
        }
    ]
}


class TestArxivParsing(unittest.TestCase):
    def test_parse_feed(self):
        results = ArxivSearchProvider().parseFeed(ARXIV_FEED)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].title, "Remote Work and Urban Office Demand")
        self.assertEqual(results[0].snippet, "We study office vacancy after 2020.")
        self.assertEqual(results[0].url, "http://arxiv.org/abs/2401.00001v1")
        self.assertEqual(results[0].publishedAt, "2024-01-02T00:00:00Z")
        self.assertEqual(results[1].url, "http://arxiv.org/abs/2401.00002v1")
        self.assertEqual(results[1].provider, cfg.ARXIV_PROVIDER_ID)

    def test_malformed_feed_raises_parse_error(self):
        with self.assertRaises(ET.ParseError):
            ArxivSearchProvider().parseFeed("<feed><entry>")


class TestRedditParsing(unittest.TestCase):
    def test_parse_listing(self):
        provider = RedditSearchProvider(baseUrl="https://www.reddit.com/")
        results = provider.parseListing(REDDIT_LISTING)
        self.assertEqual(results[0].url, "https://www.reddit.com/r/RealEstate/comments/abc/downtown/")
        self.assertEqual(results[0].provider, "reddit:r/RealEstate")
        self.assertEqual(results[0].score, 42)
        self.assertEqual(results[1].snippet, "")

    def test_unexpected_shape_raises_key_error(self):
        with self.assertRaises(KeyError):
            RedditSearchProvider().parseListing({"kind": "Listing"})

    def test_normalize_subreddit(self):
        self.assertEqual(RedditSearchProvider.normalizeSubreddit(" r/RealEstate/ "), "RealEstate")
        self.assertEqual(RedditSearchProvider.normalizeSubreddit("/R/investing"), "investing")
        self.assertEqual(RedditSearchProvider.normalizeSubreddit("economics"), "economics")


class TestWebParsing(unittest.TestCase):
    def test_citations_become_results(self):
        results = WebSearchProvider(apiKey="k").parseResponse(WEB_RESPONSE, maxResults=5)
        self.assertEqual([r.url for r in results], ["https://example.org/a", "https://example.org/b"])
        self.assertEqual(results[0].snippet, "Vacancy")
        self.assertEqual(results[1].snippet, "Full excerpt")
        self.assertEqual(results[1].title, "https://example.org/b")

    def test_summary_fallback_without_citations(self):
        response = {"output": [{"type": "message", "content": [{"type": "output_text", "text": "Just a summary."}]}]}
        results = WebSearchProvider(apiKey="k").parseResponse(response, maxResults=5)
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].snippet, "Just a summary.")

    def test_result_cap(self):
        results = WebSearchProvider(apiKey="k").parseResponse(WEB_RESPONSE, maxResults=1)
        self.assertEqual(len(results), 1)


class TestMissingCredentials(unittest.IsolatedAsyncioTestCase):
    async def test_web_search_requires_key(self):
        with self.assertRaises(GatewayFailure) as ctx:
            await WebSearchProvider(apiKey="").call(SearchRequest(terms=["office"], maxResults=3))
        self.assertIs(ctx.exception.kind, FailureKind.AUTH_MISSING)

    async def test_deep_search_requires_key(self):
        request = LlmRequest(messages=[{"role": "user", "content": "q"}], model="sonar-pro", task="deep_search")
        with self.assertRaises(GatewayFailure) as ctx:
            await PerplexityDeepSearch(apiKey="").call(request)
        self.assertIs(ctx.exception.kind, FailureKind.AUTH_MISSING)
        self.assertEqual(ctx.exception.provider, cfg.DEEP_PROVIDER_ID)


if __name__ == "__main__":
    unittest.main()
