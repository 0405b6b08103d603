"""
Временное хранилище загруженных файлов.

Файл живёт ровно один запрос:
    with stored_upload(stream, "report.pdf") as ref:
        ...  # ref.open() → поток на чтение
    # здесь файла уже нет, и при успехе, и при исключении

Имя <time_ns>_<uuid8><ext> уникально при параллельных загрузках.
"""

import logging
import os
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union
from uuid import uuid4

from labreport.errors import StorageError


log = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
DEFAULT_EXT = ".pdf"


@dataclass(frozen=True)
class StoredRef:
    path: Path
    original_name: str

    def open(self) -> BinaryIO:
        return self.path.open("rb")


def _unique_name(original_name: str) -> str:
    ext = Path(original_name or "").suffix or DEFAULT_EXT
    return f"{time.time_ns()}_{uuid4().hex[:8]}{ext}"


def store(
    stream: BinaryIO,
    original_name: str,
    upload_dir: Optional[Union[str, Path]] = None,
) -> StoredRef:
    target_dir = Path(upload_dir) if upload_dir is not None else UPLOAD_DIR
    path = target_dir / _unique_name(original_name)
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as out:
            shutil.copyfileobj(stream, out)
    except OSError as e:
        # недописанный файл не оставляем
        path.unlink(missing_ok=True)
        log.error("Failed to store upload %r: %s", original_name, e)
        raise StorageError() from e

    log.info("Stored upload %r as %s", original_name, path.name)
    return StoredRef(path=path, original_name=original_name or path.name)


def release(ref: StoredRef) -> None:
    try:
        ref.path.unlink()
    except OSError as e:
        log.warning("Could not delete temporary file %s: %s", ref.path, e)
    else:
        log.debug("Deleted temporary file %s", ref.path.name)


@contextmanager
def stored_upload(
    stream: BinaryIO,
    original_name: str,
    upload_dir: Optional[Union[str, Path]] = None,
) -> Iterator[StoredRef]:
    ref = store(stream, original_name, upload_dir)
    try:
        yield ref
    finally:
        release(ref)
