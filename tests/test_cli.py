import pytest

from lanmedia.cli import build_parser, run

from tests.helpers import png_bytes


def test_parser_accepts_documented_commands():
    parser = build_parser()
    args = parser.parse_args(
        ["--server", "http://10.0.0.2:8080", "media", "a1", "--sort", "duration-asc"]
    )
    assert args.command == "media"
    assert args.sort == "duration-asc"
    with pytest.raises(SystemExit):
        parser.parse_args(["media", "a1", "--sort", "by-name"])


@pytest.mark.asyncio
async def test_url_command_prints_stream_url(capsys):
    code = await run(["--server", "http://192.168.1.5:8080/", "url", "v1"])
    assert code == 0
    assert capsys.readouterr().out.strip() == "http://192.168.1.5:8080/video/v1"


@pytest.mark.asyncio
async def test_invalid_server_address_is_reported(capsys):
    code = await run(["--server", "not-a-url", "url", "v1"])
    assert code == 1
    assert "[!] Error" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_albums_command_groups_library(media_server, capsys):
    media_server.albums = [
        {"id": "a1", "name": "ALL VIDEOS", "videoCount": 3, "type": "mixed"},
        {"id": "a2", "name": "Trips", "videoCount": 1, "type": None},
    ]
    code = await run(["--server", media_server.address, "albums"])
    out = capsys.readouterr().out
    assert code == 0
    assert out.index("[Library]") < out.index("ALL VIDEOS") < out.index("[My albums]")
    assert out.index("[My albums]") < out.index("Trips")


@pytest.mark.asyncio
async def test_media_command_sorts_and_filters(media_server, capsys):
    media_server.media["a1"] = [
        {"id": "v1", "filename": "short.mov", "duration": 5, "importDate": "2024-01-01T00:00:00Z"},
        {"id": "v2", "filename": "long.mov", "duration": 500, "importDate": "2024-01-02T00:00:00Z"},
        {"id": "v3", "filename": "other.mp4", "duration": 50, "importDate": "2024-01-03T00:00:00Z"},
    ]
    code = await run(
        ["--server", media_server.address, "media", "a1", "--sort", "duration-desc", "--filter", ".MOV"]
    )
    lines = capsys.readouterr().out.strip().splitlines()
    assert code == 0
    assert [line.split("\t")[0].strip() for line in lines] == ["v2", "v1"]
    assert "8:20" in lines[0]


@pytest.mark.asyncio
async def test_thumbnail_command_names_file_after_image_type(
    media_server, capsys, tmp_path, monkeypatch
):
    media_server.thumbnails["x1"] = [(200, png_bytes(), "image/png")]
    monkeypatch.chdir(tmp_path)
    code = await run(["--server", media_server.address, "thumbnail", "x1"])
    assert code == 0
    assert (tmp_path / "x1.png").read_bytes() == png_bytes()
    assert "4x3" in capsys.readouterr().out
