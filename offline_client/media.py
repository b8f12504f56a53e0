import os
import re
from pathlib import Path
from typing import Callable

import httpx
import structlog

from .api import ApiClient
from .errors import DownloadError

logger = structlog.get_logger()

# Расширение файла по типу блока контента
EXTENSIONS = {"video": "mp4", "audio": "mp3", "document": "pdf"}
_CONTENT_RANGE_RE = re.compile(r"^bytes (?:(\d+)-(\d+)|\*)/(\d+)$")

ProgressCallback = Callable[[float], None]


def extension_for(content_type: str | None) -> str:
    return EXTENSIONS.get(content_type or "", "mp4")


def _total_from_content_range(value: str | None) -> int | None:
    match = _CONTENT_RANGE_RE.match(value or "")
    return int(match.group(3)) if match else None


def _start_from_content_range(value: str | None) -> int | None:
    match = _CONTENT_RANGE_RE.match(value or "")
    return int(match.group(1)) if match and match.group(1) is not None else None


class MediaDownloader:
    """
    Скачивает медиафайлы в <root>/videos/<fileId>.<ext>.
    Байты пишутся в .part и переименовываются только после проверки длины,
    поэтому наличие итогового файла означает полную загрузку.
    """

    def __init__(self, api: ApiClient, root: str | Path):
        self.api = api
        self.media_dir = Path(root) / "videos"

    def path_for(self, file_id: str, extension: str = "mp4") -> Path:
        return self.media_dir / f"{Path(file_id).name}.{extension}"

    def _part_path(self, target: Path) -> Path:
        return target.with_name(target.name + ".part")

    def save_file_for_offline(self, file_id: str, token: str,
                              on_progress: ProgressCallback | None = None,
                              extension: str = "mp4") -> Path:
        self.media_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(file_id, extension)
        part = self._part_path(target)
        offset = part.stat().st_size if part.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else None

        try:
            with self.api.stream(f"/files/{file_id}/stream", params={"token": token}, headers=headers) as response:
                if response.status_code == 416 and offset:
                    total = _total_from_content_range(response.headers.get("content-range"))
                    if total == offset:
                        # .part уже целиком скачан, не успели переименовать
                        os.replace(part, target)
                        return target
                    # .part не соответствует файлу на сервере
                    logger.warning("offline_part_discarded", file_id=file_id, offset=offset, total=total)
                    part.unlink()
                    return self.save_file_for_offline(file_id, token, on_progress, extension)

                if response.status_code == 206:
                    content_range = response.headers.get("content-range")
                    start = _start_from_content_range(content_range)
                    if start != offset:
                        if not offset:
                            raise DownloadError(file_id, f"unexpected range: {content_range}")
                        # Сервер отдал не тот диапазон: дописывать нельзя, качаем заново
                        logger.warning("offline_range_mismatch", file_id=file_id, offset=offset, start=start)
                        part.unlink()
                        return self.save_file_for_offline(file_id, token, on_progress, extension)
                    mode, written = "ab", offset
                    total = _total_from_content_range(content_range)
                elif response.status_code == 200:
                    mode, written = "wb", 0
                    length = response.headers.get("content-length")
                    total = int(length) if length else None
                else:
                    raise DownloadError(file_id, f"HTTP {response.status_code}")

                with open(part, mode) as f:
                    for block in response.iter_bytes():
                        f.write(block)
                        written += len(block)
                        if on_progress and total:
                            on_progress(written / total * 100)
        except httpx.HTTPError as e:
            raise DownloadError(file_id, str(e)) from e
        except OSError as e:
            raise DownloadError(file_id, f"local write failed: {e}") from e

        if total is not None and written != total:
            raise DownloadError(file_id, f"incomplete download: {written} of {total} bytes")
        os.replace(part, target)
        logger.info("offline_file_saved", file_id=file_id, path=str(target), size=written)
        return target

    def save_video_for_offline(self, file_id: str, token: str,
                               on_progress: ProgressCallback | None = None) -> Path:
        return self.save_file_for_offline(file_id, token, on_progress, "mp4")

    def get_offline_file_path(self, file_id: str, extension: str = "mp4") -> Path | None:
        path = self.path_for(file_id, extension)
        return path if path.is_file() else None

    def get_offline_video_path(self, file_id: str) -> Path | None:
        return self.get_offline_file_path(file_id, "mp4")

    def is_file_offline(self, file_id: str, extension: str = "mp4") -> bool:
        return self.get_offline_file_path(file_id, extension) is not None

    def is_video_offline(self, file_id: str) -> bool:
        return self.is_file_offline(file_id, "mp4")

    def remove_offline_file(self, file_id: str, extension: str = "mp4") -> None:
        target = self.path_for(file_id, extension)
        target.unlink(missing_ok=True)
        self._part_path(target).unlink(missing_ok=True)

    def remove_offline_video(self, file_id: str) -> None:
        self.remove_offline_file(file_id, "mp4")
