import asyncio

import pytest

from lanmedia.assets import AssetFetcher
from lanmedia.downloader import already_saved, save_album, save_media
from lanmedia.models import MediaItem, MediaKind

from tests.helpers import settle, wait_for_condition

CLIP = MediaItem("v1", "clip.mov", 3.0, imported_at=None)
PHOTO = MediaItem("p1", "pic.png", 0.0, imported_at=None, media_kind=MediaKind.PHOTO)
MISSING = MediaItem("gone", "gone.mov", 1.0, imported_at=None)


@pytest.mark.asyncio
async def test_save_media_streams_to_folder(media_server, session, fast_settings, tmp_path):
    media_server.videos["v1"] = (b"movie-bytes" * 1000, "video/quicktime")
    ok, err = await save_media(
        AssetFetcher(session, fast_settings), media_server.address, CLIP, str(tmp_path)
    )
    assert ok and err is None
    assert (tmp_path / "clip.mov").read_bytes() == b"movie-bytes" * 1000


@pytest.mark.asyncio
async def test_save_album_reports_failures_and_skips_existing(
    media_server, session, fast_settings, tmp_path
):
    media_server.videos["v1"] = (b"movie", "video/quicktime")
    media_server.videos["p1"] = (b"png", "image/png")
    settings = fast_settings.with_overrides(max_attempts=2)
    fetcher = AssetFetcher(session, settings)
    folder = tmp_path / "album"

    saved, failed, errors = await save_album(
        fetcher, media_server.address, [CLIP, PHOTO, MISSING], str(folder)
    )
    assert sorted(saved) == ["p1", "v1"]
    assert failed == ["gone"]
    assert len(errors) == 1 and "gone.mov" in errors[0]
    assert not (folder / "gone.mov").exists()

    saved, failed, _ = await save_album(
        fetcher, media_server.address, [CLIP, PHOTO], str(folder)
    )
    assert saved == [] and failed == []
    assert media_server.count("/video/v1") == 1


def test_already_saved_sees_deduplicated_copies(tmp_path):
    assert not already_saved(str(tmp_path / "missing"), CLIP)
    (tmp_path / "clip (1).mov").write_bytes(b"x")
    assert already_saved(str(tmp_path), CLIP)


@pytest.mark.asyncio
async def test_cancelled_download_leaves_no_partial_file(
    media_server, session, fast_settings, tmp_path
):
    media_server.videos["v1"] = (b"x" * 1_000_000, "video/quicktime")
    media_server.stalled["v1"] = 1000
    folder = tmp_path / "album"
    task = asyncio.create_task(
        save_album(
            AssetFetcher(session, fast_settings), media_server.address, [CLIP], str(folder)
        )
    )
    await wait_for_condition(lambda: (folder / "clip.mov").exists())
    await settle()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    media_server.release.set()

    assert list(folder.iterdir()) == []
    assert not already_saved(str(folder), CLIP)
