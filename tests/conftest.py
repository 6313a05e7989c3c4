"""Shared pytest fixtures for the audio gateway test suite.

No test touches the network: platform backends are faked at the
PlatformBackend boundary, yt-dlp is patched where a backend itself is under
test, and upstream HTTP goes through ``httpx.MockTransport``.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

# Keep log and download output out of the real filesystem locations
_TMP = Path(tempfile.mkdtemp(prefix="audio-gateway-tests-"))
os.environ.setdefault("LOG_DIR", str(_TMP / "logs"))
os.environ.setdefault("DOWNLOADS_DIR", str(_TMP / "downloads"))

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from gateway.services.formats import StreamFormat
from gateway.services.resolver import ResolutionEngine
from gateway.services.session import BackendSession


class FakeBackend:
    """In-memory PlatformBackend that counts every call."""

    name = "fake"

    def __init__(self, formats=None, init_error=None, fetch_error=None, init_delay=0.0):
        self.formats = formats if formats is not None else {}
        self.init_error = init_error
        self.fetch_error = fetch_error
        self.init_delay = init_delay
        self.create_calls = 0
        self.fetch_calls = []

    async def create_client(self):
        self.create_calls += 1
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_error is not None:
            error, self.init_error = self.init_error, None
            raise error
        return f"client-{self.create_calls}"

    async def fetch_formats(self, client, video_id):
        self.fetch_calls.append((client, video_id))
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.formats.get(video_id, [])


@pytest.fixture
def scenario_formats():
    """Formats for dQw4w9WgXcQ: one video, two audio."""
    return [
        StreamFormat(mime_type="video/mp4", bitrate=1000, url="V1", format_id="137"),
        StreamFormat(mime_type="audio/webm", bitrate=160, url="U1", format_id="251"),
        StreamFormat(mime_type="audio/mp4", bitrate=128, url="U2", format_id="140"),
    ]


@pytest.fixture
def fake_backend(scenario_formats):
    return FakeBackend(formats={"dQw4w9WgXcQ": scenario_formats})


@pytest.fixture
def engine(fake_backend):
    return ResolutionEngine(BackendSession(fake_backend))
