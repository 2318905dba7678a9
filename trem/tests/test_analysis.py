import base64
import json
import unittest

import httpx

from trem.collaborators.analysis import GeminiAnalyzer, extract_json, to_analysis_result
from trem.errors import AnalysisError


class ExtractJsonTests(unittest.TestCase):
    def test_direct_json(self) -> None:
        self.assertEqual(extract_json('{"description": "a", "tags": []}')["description"], "a")

    def test_fenced_block(self) -> None:
        text = 'Here you go:\n```json\n{"description": "beach", "tags": ["sun"]}\n```\nEnjoy.'
        self.assertEqual(extract_json(text)["tags"], ["sun"])

    def test_first_balanced_object(self) -> None:
        text = 'Sure! {"description": "a {nested} brace", "tags": ["x"]} and then {"other": 1}'
        self.assertEqual(extract_json(text)["description"], "a {nested} brace")

    def test_nothing_parseable_raises(self) -> None:
        with self.assertRaises(AnalysisError):
            extract_json("no json here")
        with self.assertRaises(AnalysisError):
            extract_json("{ broken")

    def test_to_analysis_result(self) -> None:
        result = to_analysis_result({"description": "d", "tags": "a, b"})
        self.assertEqual(result.tags, ["a", "b"])
        with self.assertRaises(AnalysisError):
            to_analysis_result(["not", "an", "object"])


class GeminiAnalyzerTests(unittest.IsolatedAsyncioTestCase):
    async def test_sends_at_most_max_frames_and_parses_reply(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            self.assertEqual(request.headers["x-goog-api-key"], "key")
            self.assertTrue(request.url.path.endswith("/models/test-model:generateContent"))
            reply = '```json\n{"description": "A dog runs", "tags": ["dog", "park"]}\n```'
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": reply}]}}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        analyzer = GeminiAnalyzer(api_key="key", model="test-model", base_url="https://gemini.test", max_frames=5, client=client)

        result = await analyzer.analyze(frames=[b"f%d" % i for i in range(8)])

        self.assertEqual(result.description, "A dog runs")
        self.assertEqual(result.tags, ["dog", "park"])
        parts = seen[0]["contents"][0]["parts"]
        self.assertEqual(len(parts), 6)
        self.assertEqual(parts[1]["inlineData"]["mimeType"], "image/jpeg")
        self.assertEqual(base64.b64decode(parts[1]["inlineData"]["data"]), b"f0")

    async def test_blob_used_when_no_frames(self) -> None:
        analyzer = GeminiAnalyzer(api_key="key")
        parts = analyzer.build_parts([], b"img", "image/png")
        self.assertEqual(parts[1]["inlineData"]["mimeType"], "image/png")

    async def test_missing_key_or_http_error_raises(self) -> None:
        with self.assertRaises(AnalysisError):
            await GeminiAnalyzer(api_key="").analyze(blob=b"x")
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429, text="quota")))
        self.addAsyncCleanup(client.aclose)
        with self.assertRaises(AnalysisError):
            await GeminiAnalyzer(api_key="key", client=client).analyze(blob=b"x")


if __name__ == "__main__":
    unittest.main()
