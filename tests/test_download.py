"""
Unit tests for live_subtitle.download module.
"""

import os

import pytest

from live_subtitle.download import TEMP_SUFFIX, stream_to_file


async def chunks_of(*parts, fail_after=None):
    for index, part in enumerate(parts):
        if fail_after is not None and index == fail_after:
            raise ConnectionResetError("connection reset")
        yield part


class TestStreamToFile:
    """Tests for stream_to_file."""

    @pytest.mark.asyncio
    async def test_completed_download_renamed(self, tmp_path):
        dest = str(tmp_path / "ggml-base.bin")

        await stream_to_file(chunks_of(b"ab", b"cd"), 4, dest, "ggml-base.bin")

        with open(dest, "rb") as f:
            assert f.read() == b"abcd"
        assert not os.path.exists(dest + TEMP_SUFFIX)

    @pytest.mark.asyncio
    async def test_interrupted_download_leaves_nothing(self, tmp_path):
        """Neither the final file nor the temp file survives a failure."""
        dest = str(tmp_path / "ggml-base.bin")

        with pytest.raises(ConnectionResetError):
            await stream_to_file(chunks_of(b"ab", b"cd", fail_after=1), 4, dest, "ggml-base.bin")

        assert not os.path.exists(dest)
        assert not os.path.exists(dest + TEMP_SUFFIX)

    @pytest.mark.asyncio
    async def test_progress_monotonic_without_duplicates(self, tmp_path):
        progress = []
        parts = [b"x"] * 7 + [b"y" * 193]

        await stream_to_file(chunks_of(*parts), 200, str(tmp_path / "m.bin"), "m.bin", progress.append)

        percents = [int(p.rsplit(" ", 1)[1].rstrip("%")) for p in progress]
        assert percents == sorted(set(percents))
        assert percents[-1] == 100
        assert progress[0] == "Downloading m.bin: 1%"

    @pytest.mark.asyncio
    async def test_unknown_length_reports_nothing(self, tmp_path):
        progress = []
        await stream_to_file(chunks_of(b"abc"), 0, str(tmp_path / "m.bin"), "m.bin", progress.append)
        assert progress == []
