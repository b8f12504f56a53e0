import hashlib
import os
import tempfile
from pathlib import Path
from typing import Iterable

from ..application.use_cases.chunked_upload import IArtifactStore


class LocalArtifactStore(IArtifactStore):
    """
    Собранные файлы в локальном каталоге.
    Запись идёт во временный файл и переименовывается только целиком.
    """

    def __init__(self, base_path: str = "./storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path(self, name: str) -> Path:
        # Имя не должно выводить за пределы каталога
        return self.base_path / Path(name).name

    def write(self, name: str, chunks: Iterable[bytes]) -> tuple[int, str]:
        digest = hashlib.sha256()
        size = 0
        fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    f.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)
            os.replace(tmp_name, self.path(name))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return size, digest.hexdigest()

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def delete(self, name: str) -> None:
        self.path(name).unlink(missing_ok=True)
