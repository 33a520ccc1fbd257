import pytest

from lanmedia.utils import (
    build_address,
    dedupe_path,
    format_duration,
    get_filename,
    image_extension,
    normalize_address,
    sanitize,
)


def test_build_address_from_resolved_host_and_port():
    assert build_address("192.168.1.5", 8080) == "http://192.168.1.5:8080"
    assert build_address("mac-mini.local.", 80) == "http://mac-mini.local:80"
    assert build_address("fe80::1", 9000) == "http://[fe80::1]:9000"
    assert build_address("fe80::1%eth0", 9000) == "http://[fe80::1%25eth0]:9000"


def test_normalize_address_strips_trailing_slash():
    assert normalize_address("http://192.168.1.5:8080/") == "http://192.168.1.5:8080"
    assert normalize_address("http://localhost:8080") == "http://localhost:8080"


@pytest.mark.parametrize("bad", ["", "192.168.1.5:8080", "ftp://host/x", "http://"])
def test_normalize_address_rejects_garbage(bad):
    with pytest.raises(ValueError):
        normalize_address(bad)


def test_get_filename_prefers_catalogue_name_and_borrows_extension():
    headers = {"Content-Disposition": 'attachment; filename="clip.mp4"'}
    assert get_filename("v1", "holiday", headers) == "holiday.mp4"
    assert get_filename("v1", None, headers) == "clip.mp4"
    assert get_filename("v1", "a/b:c.mov", {}) == "b_c.mov"
    assert get_filename("v1", None, {}) == "v1"


def test_dedupe_path_appends_counter(tmp_path):
    target = tmp_path / "a.mov"
    assert dedupe_path(str(target)) == str(target)
    target.write_bytes(b"x")
    (tmp_path / "a (1).mov").write_bytes(b"x")
    assert dedupe_path(str(target)) == str(tmp_path / "a (2).mov")


def test_image_extension_follows_content_type():
    assert image_extension("image/png") == ".png"
    assert image_extension("image/webp; q=1") == ".webp"
    assert image_extension("IMAGE/JPEG") == ".jpg"
    assert image_extension("application/octet-stream") == ".jpg"
    assert image_extension(None) == ".jpg"


def test_formatting_helpers():
    assert format_duration(65.9) == "1:05"
    assert format_duration(3725) == "1:02:05"
    assert format_duration(-3) == "0:00"
    assert sanitize(None) == "album"
