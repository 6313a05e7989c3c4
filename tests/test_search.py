"""Tests for the ytsearch-backed search service."""

import asyncio

import pytest
import yt_dlp

from gateway.services import search as search_service
from gateway.services.search import format_duration, to_search_result
from gateway.utils.exceptions import SearchError


ENTRIES = [
    {
        "ie_key": "Youtube",
        "id": "dQw4w9WgXcQ",
        "title": "Never Gonna Give You Up",
        "channel": "Rick Astley",
        "channel_id": "UCuAXFkgsw1L7xaCfnd5JJOw",
        "duration": 212.0,
        "thumbnails": [
            {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/default.jpg"},
            {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hq720.jpg"},
        ],
    },
    {"ie_key": "YoutubeTab", "id": "UCuAXFkgsw1L7xaCfnd5JJOw", "title": "Rick Astley - Topic"},
    {"ie_key": "Youtube", "id": "yPYZpwSpKmA", "title": "Together Forever"},
]


class _FakeSearchYDL:
    queries = []
    result = {"entries": ENTRIES}
    error = None

    def __init__(self, opts):
        self.opts = opts

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=False):
        _FakeSearchYDL.queries.append(url)
        if _FakeSearchYDL.error:
            raise _FakeSearchYDL.error
        return _FakeSearchYDL.result


@pytest.fixture
def fake_ydl(monkeypatch):
    _FakeSearchYDL.queries = []
    _FakeSearchYDL.error = None
    monkeypatch.setattr(yt_dlp, "YoutubeDL", _FakeSearchYDL)
    return _FakeSearchYDL


def test_search_maps_video_entries(fake_ydl):
    items = asyncio.run(search_service.search("rick astley", limit=5))

    assert fake_ydl.queries == ["ytsearch5:rick astley"]
    assert [i.id for i in items] == ["dQw4w9WgXcQ", "yPYZpwSpKmA"]

    first = items[0]
    assert first.artist == "Rick Astley"
    assert first.thumbnail.endswith("hq720.jpg")
    assert first.duration == "3:32"
    assert first.author_id == "UCuAXFkgsw1L7xaCfnd5JJOw"


def test_missing_fields_get_defaults(fake_ydl):
    items = asyncio.run(search_service.search("together forever"))
    second = items[1]

    assert second.artist == "Unknown"
    assert second.thumbnail == "https://img.youtube.com/vi/yPYZpwSpKmA/hqdefault.jpg"
    assert second.duration is None
    assert second.author_id == ""


def test_blank_query_returns_nothing_without_searching(fake_ydl):
    assert asyncio.run(search_service.search("")) == []
    assert asyncio.run(search_service.search("   ")) == []
    assert fake_ydl.queries == []


def test_provider_failure_raises_search_error(fake_ydl):
    fake_ydl.error = yt_dlp.utils.DownloadError("HTTP Error 429: Too Many Requests")

    with pytest.raises(SearchError, match="429"):
        asyncio.run(search_service.search("anything"))


def test_uploader_used_when_channel_missing():
    result = to_search_result({"id": "abcdefghijk", "title": "t", "uploader": "Someone"})
    assert result.artist == "Someone"


@pytest.mark.parametrize("seconds, expected", [
    (None, None),
    (0, "0:00"),
    (59.9, "0:59"),
    (212, "3:32"),
    (3600, "1:00:00"),
    (3725, "1:02:05"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
