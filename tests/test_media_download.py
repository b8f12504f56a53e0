import httpx
import pytest

from conftest import mock_api
from offline_client.errors import DownloadError
from offline_client.media import MediaDownloader, extension_for

DATA = b"0123456789"


def range_server(data: bytes, seen: list | None = None):
    """Обработчик MockTransport, отдающий файл с поддержкой Range"""
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        assert request.url.path == "/api/v1/files/f1/stream"
        header = request.headers.get("range")
        if not header:
            return httpx.Response(200, content=data)
        start = int(header.removeprefix("bytes=").rstrip("-"))
        if start >= len(data):
            return httpx.Response(416, headers={"Content-Range": f"bytes */{len(data)}"})
        return httpx.Response(206, content=data[start:],
                              headers={"Content-Range": f"bytes {start}-{len(data) - 1}/{len(data)}"})
    return handler


def test_full_download(tmp_path):
    """Тест скачивания файла целиком"""
    seen = []
    media = MediaDownloader(mock_api(range_server(DATA, seen)), tmp_path)
    progress = []

    path = media.save_file_for_offline("f1", "tok", on_progress=progress.append)

    assert path == tmp_path / "videos" / "f1.mp4"
    assert path.read_bytes() == DATA
    assert not (tmp_path / "videos" / "f1.mp4.part").exists()
    assert progress[-1] == 100
    assert seen[0].url.params["token"] == "tok"
    assert media.is_video_offline("f1")
    assert media.get_offline_video_path("f1") == path


def test_resume_from_partial_file(tmp_path):
    """Тест докачки с места обрыва"""
    seen = []
    media = MediaDownloader(mock_api(range_server(DATA, seen)), tmp_path)
    media.media_dir.mkdir(parents=True)
    (media.media_dir / "f1.mp4.part").write_bytes(DATA[:4])

    path = media.save_file_for_offline("f1", "tok")

    assert seen[0].headers["range"] == "bytes=4-"
    assert path.read_bytes() == DATA


def test_truncated_download_keeps_only_part(tmp_path):
    """Тест обрыва загрузки: итоговый файл не появляется"""
    def handler(request):
        return httpx.Response(206, content=DATA[:5], headers={"Content-Range": "bytes 0-9/10"})

    media = MediaDownloader(mock_api(handler), tmp_path)
    with pytest.raises(DownloadError) as exc:
        media.save_file_for_offline("f1", "tok")

    assert "incomplete" in exc.value.reason
    assert not media.is_file_offline("f1")
    assert (media.media_dir / "f1.mp4.part").read_bytes() == DATA[:5]

    # Следующая попытка докачивает остаток
    media.api = mock_api(range_server(DATA))
    assert media.save_file_for_offline("f1", "tok").read_bytes() == DATA


def test_complete_part_is_renamed_on_416(tmp_path):
    media = MediaDownloader(mock_api(range_server(DATA)), tmp_path)
    media.media_dir.mkdir(parents=True)
    (media.media_dir / "f1.mp4.part").write_bytes(DATA)

    path = media.save_file_for_offline("f1", "tok")
    assert path.read_bytes() == DATA
    assert not (media.media_dir / "f1.mp4.part").exists()


def test_stale_part_is_discarded(tmp_path):
    """Тест .part длиннее файла на сервере"""
    seen = []
    media = MediaDownloader(mock_api(range_server(DATA, seen)), tmp_path)
    media.media_dir.mkdir(parents=True)
    (media.media_dir / "f1.mp4.part").write_bytes(b"x" * 20)

    path = media.save_file_for_offline("f1", "tok")
    assert path.read_bytes() == DATA
    assert "range" not in seen[-1].headers


def test_mismatched_range_restarts_download(tmp_path):
    """Тест ответа 206 с другим началом диапазона"""
    seen = []

    def handler(request):
        seen.append(request)
        if request.headers.get("range"):
            return httpx.Response(206, content=DATA[2:], headers={"Content-Range": "bytes 2-9/10"})
        return httpx.Response(200, content=DATA)

    media = MediaDownloader(mock_api(handler), tmp_path)
    media.media_dir.mkdir(parents=True)
    (media.media_dir / "f1.mp4.part").write_bytes(DATA[:4])

    path = media.save_file_for_offline("f1", "tok")

    assert path.read_bytes() == DATA
    assert [r.headers.get("range") for r in seen] == ["bytes=4-", None]


def test_unrequested_partial_response(tmp_path):
    def handler(request):
        return httpx.Response(206, content=DATA[2:], headers={"Content-Range": "bytes 2-9/10"})

    media = MediaDownloader(mock_api(handler), tmp_path)
    with pytest.raises(DownloadError):
        media.save_file_for_offline("f1", "tok")
    assert not media.is_file_offline("f1")


def test_http_error(tmp_path):
    media = MediaDownloader(mock_api(lambda request: httpx.Response(404, json={"detail": "file not found"})),
                            tmp_path)
    with pytest.raises(DownloadError) as exc:
        media.save_file_for_offline("f1", "tok")
    assert exc.value.reason == "HTTP 404"
    assert not media.is_file_offline("f1")


def test_network_error(tmp_path):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    media = MediaDownloader(mock_api(handler), tmp_path)
    with pytest.raises(DownloadError):
        media.save_file_for_offline("f1", "tok")


def test_remove_offline_file(tmp_path):
    media = MediaDownloader(mock_api(range_server(DATA)), tmp_path)
    media.save_file_for_offline("f1", "tok", extension="pdf")
    assert media.is_file_offline("f1", "pdf")
    assert not media.is_video_offline("f1")

    (media.media_dir / "f1.pdf.part").write_bytes(b"junk")
    media.remove_offline_file("f1", "pdf")
    assert not media.is_file_offline("f1", "pdf")
    assert not (media.media_dir / "f1.pdf.part").exists()


@pytest.mark.parametrize("block_type,extension", [
    ("video", "mp4"), ("audio", "mp3"), ("document", "pdf"), ("image", "mp4"), (None, "mp4"),
])
def test_extension_for(block_type, extension):
    assert extension_for(block_type) == extension
