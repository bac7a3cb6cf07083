"""
Tests for the web search and image generation clients.
"""

import base64
import json

import httpx
import pytest

from mcp_gateway.core.errors import ToolExecutionError
from mcp_gateway.tools.image_generation import ImageGenerationClient
from mcp_gateway.tools.web_search import WebSearchClient, extract_content, parse_search_results

PAGE = """
<html>
  <head>
    <title>Example Page</title>
    <meta name="description" content="An example">
    <script>var tracking = 1;</script>
  </head>
  <body>
    <nav>Navigation</nav>
    <main><h1>Heading</h1><p>Main <b>content</b> here.</p></main>
  </body>
</html>
"""

SEARCH_RESULTS = """
<div class="result">
  <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fpython.org%2F&rut=x">Python</a>
  <a class="result__snippet">The official home of Python.</a>
</div>
<div class="result">
  <a class="result__a" href="https://docs.python.org/">Docs</a>
</div>
<div class="result"><span>no link</span></div>
"""


class TestExtraction:
    """Test HTML parsing helpers."""

    def test_extract_content(self):
        content = extract_content(PAGE)

        assert content["title"] == "Example Page"
        assert content["description"] == "An example"
        assert "Heading" in content["content"]
        assert "**content**" in content["content"]
        assert "Navigation" not in content["content"]
        assert "tracking" not in content["content"]

    def test_parse_search_results(self):
        results = parse_search_results(SEARCH_RESULTS, limit=5)

        assert results == [
            {"title": "Python", "url": "https://python.org/", "snippet": "The official home of Python."},
            {"title": "Docs", "url": "https://docs.python.org/", "snippet": ""},
        ]
        assert len(parse_search_results(SEARCH_RESULTS, limit=1)) == 1


class TestWebSearchClient:
    """Test WebSearchClient against a mock transport."""

    async def test_search(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert b"q=python" in request.content
            return httpx.Response(200, text=SEARCH_RESULTS)

        client = WebSearchClient(cache_dir=tmp_path, transport=httpx.MockTransport(handler))
        result = await client.search_web("python", 1)

        assert result["query"] == "python"
        assert [r["title"] for r in result["results"]] == ["Python"]
        assert result["searchedAt"].endswith("Z")

    async def test_content_is_cached(self, tmp_path):
        """Test that a second fetch within the cache window does not hit the network."""
        hits = []

        def handler(request: httpx.Request) -> httpx.Response:
            hits.append(str(request.url))
            return httpx.Response(200, text=PAGE)

        client = WebSearchClient(cache_dir=tmp_path, transport=httpx.MockTransport(handler))
        first = await client.get_webpage_content("https://example.com/")
        second = await client.get_webpage_content("https://example.com/")

        assert first["title"] == second["title"] == "Example Page"
        assert len(hits) == 1
        assert len(list(tmp_path.glob("*.json"))) == 1

        await client.get_webpage_content("https://example.com/", use_cache=False)
        assert len(hits) == 2

    async def test_expired_cache_is_refetched(self, tmp_path):
        hits = []

        def handler(request: httpx.Request) -> httpx.Response:
            hits.append(str(request.url))
            return httpx.Response(200, text=PAGE)

        client = WebSearchClient(cache_dir=tmp_path, cache_max_age=0, transport=httpx.MockTransport(handler))
        await client.get_webpage_content("https://example.com/")
        await client.get_webpage_content("https://example.com/")

        assert len(hits) == 2

    async def test_fetch_error(self, tmp_path):
        client = WebSearchClient(
            cache_dir=tmp_path,
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(ToolExecutionError, match="Failed to fetch webpage"):
            await client.get_webpage_content("https://example.com/")

    async def test_batch(self, tmp_path):
        client = WebSearchClient(
            cache_dir=tmp_path,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=PAGE)),
        )
        results = await client.fetch_multiple_urls(["https://a.test/", "https://b.test/"], use_cache=False)
        assert [r["url"] for r in results] == ["https://a.test/", "https://b.test/"]


def key_lookup(keys):
    async def get_key(name):
        return keys.get(name)
    return get_key


PNG_BYTES = b"\x89PNG fake image"


class TestImageGenerationClient:
    """Test ImageGenerationClient against a mock transport."""

    async def test_dalle(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/generations"):
                assert request.headers["Authorization"] == "Bearer sk-openai"
                assert json.loads(request.content)["prompt"] == "a cat"
                return httpx.Response(200, json={"data": [{"url": "https://cdn.test/cat.png"}]})
            return httpx.Response(200, content=PNG_BYTES)

        client = ImageGenerationClient(
            key_lookup({"OPENAI_API_KEY": "sk-openai"}), image_dir=tmp_path, transport=httpx.MockTransport(handler)
        )
        result = await client.generate_image("a cat")

        assert result["success"] is True
        assert result["provider"] == "openai"
        assert result["image_url"].startswith("/images/dalle_")
        assert (tmp_path / result["image_url"].split("/")[-1]).read_bytes() == PNG_BYTES

    async def test_falls_back_to_stability(self, tmp_path):
        """Test that a missing OpenAI key falls back to Stability."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert "stability" in request.url.host
            return httpx.Response(200, json={"artifacts": [{"base64": base64.b64encode(PNG_BYTES).decode()}]})

        client = ImageGenerationClient(
            key_lookup({"STABILITY_API_KEY": "sk-stability"}), image_dir=tmp_path, transport=httpx.MockTransport(handler)
        )
        result = await client.generate_image("a cat", "openai")

        assert result["success"] is True
        assert result["provider"] == "stability"

    async def test_all_providers_fail(self, tmp_path):
        client = ImageGenerationClient(key_lookup({}), image_dir=tmp_path)
        result = await client.generate_image("a cat")

        assert result["success"] is False
        assert "is not configured" in result["error"]

    async def test_unsupported_provider(self, tmp_path):
        client = ImageGenerationClient(key_lookup({}), image_dir=tmp_path)
        result = await client.generate_image("a cat", "midjourney")
        assert result == {"success": False, "error": "Unsupported provider: midjourney", "prompt": "a cat", "provider": "midjourney"}

    async def test_edit_missing_file(self, tmp_path):
        client = ImageGenerationClient(key_lookup({"OPENAI_API_KEY": "k"}), image_dir=tmp_path)
        result = await client.edit_image(str(tmp_path / "missing.png"), "add a hat")

        assert result["success"] is False
        assert "Image file not found" in result["error"]

    async def test_variation(self, tmp_path):
        source = tmp_path / "source.png"
        source.write_bytes(PNG_BYTES)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/variations"):
                return httpx.Response(200, json={"data": [{"url": "https://cdn.test/v.png"}]})
            return httpx.Response(200, content=PNG_BYTES)

        client = ImageGenerationClient(
            key_lookup({"OPENAI_API_KEY": "k"}), image_dir=tmp_path / "out", transport=httpx.MockTransport(handler)
        )
        result = await client.create_image_variation(str(source))

        assert result["success"] is True
        assert result["variation_image_url"].startswith("/images/variation_")
