import pytest

from catalog_sync.errors import TransientError
from catalog_sync.sources.models import ImageRef
from catalog_sync.sync.components.images import ImageResolver, sanitize_images

from conftest import FakeWooClient, Recorder


def test_sanitize_keeps_only_real_files():
    images = [
        {"src": "https://cdn.test/img/a.jpg"},
        {"src": "http://cdn.test/img/b.PNG"},
        {"src": "https://cdn.test/files/report.v2"},
        {"src": "ftp://cdn.test/c.jpg"},
        {"src": "https://cdn.test/"},
        {"src": "https://cdn.test/dir/"},
        {"src": "https://cdn.test/noext"},
        {"src": "/relative/d.jpg"},
        {"src": ""},
    ]
    assert sanitize_images(images) == [
        {"src": "https://cdn.test/img/a.jpg"},
        {"src": "http://cdn.test/img/b.PNG"},
        {"src": "https://cdn.test/files/report.v2"},
    ]


def test_sanitize_empty_is_none():
    assert sanitize_images([]) is None
    assert sanitize_images(None) is None
    assert sanitize_images([{"src": "https://cdn.test/"}]) is None


def test_sanitize_accepts_models_and_strings():
    out = sanitize_images([ImageRef(src="https://cdn.test/a.webp"), "https://cdn.test/b.gif"])
    assert out == [{"src": "https://cdn.test/a.webp"}, {"src": "https://cdn.test/b.gif"}]


@pytest.mark.asyncio
async def test_mode_none_and_upload():
    client = FakeWooClient(media={"a.jpg": 9})
    resolver = ImageResolver(client, Recorder())
    images = [{"src": "https://cdn.test/a.jpg"}]

    assert await resolver.resolve(images, "none") is None
    assert await resolver.resolve(images, "upload") == [{"src": "https://cdn.test/a.jpg"}]
    assert client.calls_of("find_media_by_filename") == []


@pytest.mark.asyncio
async def test_prefer_existing_reuses_media_and_caches():
    client = FakeWooClient(media={"a.jpg": 9})
    rec = Recorder()
    resolver = ImageResolver(client, rec)
    images = [{"src": "https://cdn.test/x/a.jpg"}, {"src": "https://cdn.test/x/b.jpg"}]

    first = await resolver.resolve(images, "prefer_existing_by_filename")
    second = await resolver.resolve([{"src": "https://other.test/a.jpg"}], "prefer_existing_by_filename")

    assert first == [{"id": 9}, {"src": "https://cdn.test/x/b.jpg"}]
    assert second == [{"id": 9}]
    assert client.calls_of("find_media_by_filename") == [("a.jpg",), ("b.jpg",)]
    assert rec.types() == ["found_existing_media", "fallback_upload_media", "found_existing_media_cached"]
    assert rec.events[1][1] == {"basename": "b.jpg", "src": "https://cdn.test/x/b.jpg"}


@pytest.mark.asyncio
async def test_media_lookup_failure_falls_back_to_src():
    client = FakeWooClient()

    async def broken(basename):
        raise TransientError("timeout")

    client.find_media_by_filename = broken
    resolver = ImageResolver(client, Recorder())

    out = await resolver.resolve([{"src": "https://cdn.test/a.jpg"}], "prefer_existing_by_filename")
    assert out == [{"src": "https://cdn.test/a.jpg"}]


@pytest.mark.asyncio
async def test_nothing_usable_is_none():
    resolver = ImageResolver(FakeWooClient(), Recorder())
    assert await resolver.resolve([{"src": "https://cdn.test/"}], "upload") is None
