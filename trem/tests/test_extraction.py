import unittest
from unittest.mock import patch

from trem.collaborators.extraction import FfmpegExtractor, resolve_ffmpeg


class FfmpegExtractorTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_binary_yields_empty_results(self) -> None:
        extractor = FfmpegExtractor(binary="/nonexistent/ffmpeg-binary")

        result = await extractor.extract(b"not a video")

        self.assertEqual(result.frames, [])
        self.assertIsNone(result.audio)

    async def test_no_binary_on_path_yields_empty_results(self) -> None:
        with patch("trem.config.FFMPEG", ""), patch("shutil.which", return_value=None):
            self.assertIsNone(resolve_ffmpeg())
            result = await FfmpegExtractor().extract(b"x")
        self.assertEqual(result.frames, [])
        self.assertIsNone(result.audio)

    def test_configured_binary_wins(self) -> None:
        with patch("trem.config.FFMPEG", "/opt/ffmpeg/bin/ffmpeg"):
            self.assertEqual(resolve_ffmpeg(), "/opt/ffmpeg/bin/ffmpeg")


if __name__ == "__main__":
    unittest.main()
