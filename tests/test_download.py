import base64
import io
from pathlib import Path

import piexif
import pytest
import requests
from PIL import Image

from mediagen import download
from mediagen.errors import DownloadError


class FakeResp:
    def __init__(self, content: bytes, ctype: str = "image/jpeg", status: int = 200):
        self._content = content
        self.headers = {"Content-Type": ctype}
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=8192):
        # yield in one chunk
        yield self._content

    def close(self):
        pass


class FakeSession:
    def __init__(self, mapping):
        self.mapping = mapping
        self.headers = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def get(self, url, stream=True, timeout=(1, 1)):
        resp = self.mapping[url]
        if isinstance(resp, Exception):
            raise resp
        return resp


def _jpeg_bytes(size=(10, 10), color=(0, 255, 0)) -> bytes:
    buf = io.BytesIO()
    img = Image.new("RGB", size, color)
    img.save(buf, format="JPEG")
    return buf.getvalue()


def test_split_name_and_ext():
    assert download._split_name_and_ext("file.jpg") == ("file", ".jpg")
    assert download._split_name_and_ext("archive.tar.gz") == ("archive.tar", ".gz")
    assert download._split_name_and_ext("noext") == ("noext", "")
    assert download._split_name_and_ext(".hidden") == (".hidden", "")


def test_unique_path(tmp_path: Path):
    p = tmp_path / "image.jpg"
    p.write_text("x")
    p2 = download._unique_path(p)
    assert p2.name == "image-1.jpg"
    p2.write_text("y")
    p3 = download._unique_path(p)
    assert p3.name == "image-2.jpg"


def test_ext_from_content_type():
    assert download._ext_from_content_type("image/jpeg") == ".jpg"
    assert download._ext_from_content_type("image/png") == ".png"
    assert download._ext_from_content_type("text/html") == ""
    assert download._ext_from_content_type(None) == ""
    assert download._ext_from_content_type("image/nonsense; charset=binary") == ""


def test_name_from_url_decodes():
    assert download.name_from_url("https://ex/a%20b.png?x=1") == ("a b", ".png")
    assert download.name_from_url("https://ex/") == ("", "")
    assert download.name_from_url("data:image/png;base64,AAAA") == ("", "")


def test_decode_data_uri():
    payload = base64.b64encode(b"hello").decode()
    assert download.decode_data_uri(f"data:image/png;base64,{payload}") == (b"hello", "image/png")
    with pytest.raises(ValueError):
        download.decode_data_uri("data:image/png;base64")
    with pytest.raises(ValueError):
        download.decode_data_uri("data:image/png;base64,@@@")


def test_download_all_naming(monkeypatch, tmp_path: Path):
    mapping = {
        "https://ex/u1.jpg": FakeResp(b"abc", ctype="image/jpeg"),
        # No ext in URL -> infer from content-type
        "https://ex/stream": FakeResp(b"defghi", ctype="image/png"),
    }
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(["https://ex/u1.jpg", "https://ex/stream"], tmp_path, name_prefix="test")

    assert report.ok
    assert [p.name for p in report.saved] == ["test-1-u1.jpg", "test-2-stream.png"]
    assert (tmp_path / "test-1-u1.jpg").read_bytes() == b"abc"
    assert (tmp_path / "test-2-stream.png").read_bytes() == b"defghi"
    assert report.sizes[tmp_path / "test-2-stream.png"] == 6


def test_partial_failure_keeps_siblings(monkeypatch, tmp_path: Path, capsys):
    mapping = {
        "https://ex/a.png": FakeResp(b"a", ctype="image/png"),
        "https://ex/missing.png": FakeResp(b"", status=404),
        "https://ex/html": FakeResp(b"<html>", ctype="text/html"),
        "https://ex/down.png": requests.ConnectionError("refused"),
        "https://ex/b.png": FakeResp(b"b", ctype="image/png"),
    }
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(list(mapping), tmp_path)

    assert [p.name for p in report.saved] == ["a.png", "b.png"]
    assert len(report.failed) == 3
    assert all(isinstance(e, DownloadError) for e in report.failed)
    assert {e.url for e in report.failed} == {"https://ex/missing.png", "https://ex/html", "https://ex/down.png"}
    assert not report.ok
    assert "2 of 5 file(s) saved, 3 failed" in capsys.readouterr().out


def test_existing_files_not_overwritten(monkeypatch, tmp_path: Path):
    (tmp_path / "u1.jpg").write_bytes(b"old")
    mapping = {"https://ex/u1.jpg": FakeResp(b"new")}
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(["https://ex/u1.jpg"], tmp_path)

    assert report.saved == [tmp_path / "u1-1.jpg"]
    assert (tmp_path / "u1.jpg").read_bytes() == b"old"


def test_data_uri_saved_with_fallback_stem(tmp_path: Path):
    payload = base64.b64encode(b"png bytes").decode()
    report = download.download_all([f"data:image/png;base64,{payload}"], tmp_path, fallback_stem="venice")
    (path,) = report.saved
    assert path.name.startswith("venice_")
    assert path.suffix == ".png"
    assert path.read_bytes() == b"png bytes"


def test_smoke_mode_never_opens_a_session(monkeypatch, tmp_path: Path):
    def boom():
        raise AssertionError("network used in smoke mode")

    monkeypatch.setattr(download.requests, "Session", boom)
    report = download.download_all(["https://example.com/mock-fal-output.png"], tmp_path, fallback_stem="fal",
                                   smoke=True)
    (path,) = report.saved
    assert path.name == "mock-fal-output.png"
    assert path.read_bytes() == b"mock fal mock-fal-output"


def test_empty_url_list(tmp_path: Path):
    report = download.download_all([], tmp_path / "new")
    assert report.saved == [] and report.failed == []
    assert (tmp_path / "new").is_dir()


def test_download_sets_exif(monkeypatch, tmp_path: Path):
    mapping = {"https://ex/pic": FakeResp(_jpeg_bytes(), ctype="image/jpeg")}
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(["https://ex/pic"], tmp_path, name_prefix="exif",
                                   embed_exif={"provider": "fal", "model": "fal-ai/flux/dev", "prompt": "a cat"})

    (p,) = report.saved
    exif = piexif.load(str(p))
    assert exif["0th"][piexif.ImageIFD.Make] == b"fal"
    assert exif["0th"][piexif.ImageIFD.ImageDescription] == b"a cat"


def test_encode_local(tmp_path: Path):
    p = tmp_path / "in.png"
    p.write_bytes(b"img")
    assert download.encode_local(str(p)) == f"data:image/png;base64,{base64.b64encode(b'img').decode()}"
    assert download.encode_local("https://ex/in.png") == "https://ex/in.png"
    assert download.encode_local(None) is None


class BrokenStream(FakeResp):
    """Yields some bytes, then fails the way a dropped connection does."""

    def __init__(self, exc: Exception, ctype: str = "image/png"):
        super().__init__(b"half", ctype=ctype)
        self.exc = exc

    def iter_content(self, chunk_size=8192):
        yield self._content
        raise self.exc


def test_interrupted_stream_leaves_no_file(monkeypatch, tmp_path: Path):
    mapping = {
        "https://ex/pid1.png": BrokenStream(requests.exceptions.ChunkedEncodingError("connection dropped")),
        "https://ex/ok.png": FakeResp(b"ok", ctype="image/png"),
    }
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(list(mapping), tmp_path, name_prefix="pid1")

    assert [e.url for e in report.failed] == ["https://ex/pid1.png"]
    assert "connection dropped" in str(report.failed[0])
    assert sorted(p.name for p in tmp_path.iterdir()) == ["pid1-2-ok.png"]


def test_unexpected_error_is_recorded_per_file(monkeypatch, tmp_path: Path):
    mapping = {
        "https://ex/odd.png": BrokenStream(RuntimeError("decoder exploded")),
        "https://ex/ok.png": FakeResp(b"ok", ctype="image/png"),
    }
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))

    report = download.download_all(list(mapping), tmp_path)

    assert report.saved == [tmp_path / "ok.png"]
    assert isinstance(report.failed[0], DownloadError)
    assert "decoder exploded" in report.failed[0].reason
    assert not (tmp_path / "odd.png").exists()


def test_exif_error_does_not_lose_the_file(monkeypatch, tmp_path: Path, caplog):
    def broken_exif(path, metadata, **kw):
        raise KeyError("WEBP")

    mapping = {"https://ex/pic.webp": FakeResp(b"riff", ctype="image/webp")}
    monkeypatch.setattr(download.requests, "Session", lambda: FakeSession(mapping))
    monkeypatch.setattr(download, "set_exif_data", broken_exif)

    report = download.download_all(["https://ex/pic.webp"], tmp_path, embed_exif={"provider": "fal"})

    assert report.ok
    assert (tmp_path / "pic.webp").read_bytes() == b"riff"
    assert "Failed to set EXIF" in caplog.text
