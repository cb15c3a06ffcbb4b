"""Content-addressed disk cache for downloaded videos and derived artifacts.

Every artifact for a URL is stored under the MD5 digest of that URL:

    <root>/videos/<key>.mp4
    <root>/audio/<key>.<codec>
    <root>/frames/<key>/<sampling>/frame_0001.png ...

The directory listing is the index. Nothing expires on its own; ``purge``
is the only way entries go away.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Union

logger = logging.getLogger(__name__)

FRAME_SUFFIX = ".png"
_DEFAULT_EXT = {"videos": "mp4", "audio": "mp3"}


class ArtifactCategory(str, Enum):
    VIDEOS = "videos"
    AUDIO = "audio"
    FRAMES = "frames"


ALL_CATEGORIES = (ArtifactCategory.VIDEOS, ArtifactCategory.FRAMES, ArtifactCategory.AUDIO)

ArtifactData = Union[bytes, str, os.PathLike, Iterable[Union[str, os.PathLike]]]


@dataclass(frozen=True)
class PurgeResult:
    count: int
    size: int


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            break
        value /= 1024
    return f"{round(value, 2):g} {unit}"


def _dir_size(path: Path) -> int:
    if not path.exists():
        return 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


def _coerce_category(category) -> ArtifactCategory:
    if isinstance(category, ArtifactCategory):
        return category
    return ArtifactCategory(str(category))


class DiskCache:
    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)
        # lock key -> [lock, holders]; entries go away once nobody holds or waits
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def key_for(url: str) -> str:
        return hashlib.md5(str(url).encode("utf-8")).hexdigest()

    def category_dir(self, category) -> Path:
        return self.root / _coerce_category(category).value

    def path_for(self, category, key: str, ext: str | None = None) -> Path:
        category = _coerce_category(category)
        if category is ArtifactCategory.FRAMES:
            # ``ext`` names the sampling variant of a frame set, e.g. ``rate-1`` or ``count-10``
            if ext:
                return self.category_dir(category) / key / ext
            return self.category_dir(category) / key
        suffix = (ext or _DEFAULT_EXT[category.value]).lstrip(".").lower()
        return self.category_dir(category) / f"{key}.{suffix}"

    @contextmanager
    def locked(self, category, key: str, ext: str | None = None):
        lock_key = str(self.path_for(category, key, ext))
        with self._locks_guard:
            entry = self._locks.setdefault(lock_key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(lock_key, None)

    def has(self, category, key: str, ext: str | None = None) -> bool:
        path = self.path_for(category, key, ext)
        if _coerce_category(category) is ArtifactCategory.FRAMES:
            return path.is_dir() and any(p.suffix == FRAME_SUFFIX for p in path.iterdir())
        return path.is_file()

    def get(self, category, key: str, ext: str | None = None):
        """Return file bytes, or the ordered frame paths; ``None`` when absent."""
        if not self.has(category, key, ext):
            return None
        path = self.path_for(category, key, ext)
        if _coerce_category(category) is ArtifactCategory.FRAMES:
            return sorted(p for p in path.iterdir() if p.suffix == FRAME_SUFFIX)
        return path.read_bytes()

    def put(self, category, key: str, data: ArtifactData, ext: str | None = None) -> Path:
        category = _coerce_category(category)
        target = self.path_for(category, key, ext)
        target.parent.mkdir(parents=True, exist_ok=True)
        with self.locked(category, key, ext):
            if category is ArtifactCategory.FRAMES:
                self._put_frames(target, data)
            else:
                self._put_file(target, data)
        logger.info("[CACHE] stored category=%s key=%s path=%s", category.value, key, target)
        return target

    @staticmethod
    def _put_file(target: Path, data: ArtifactData) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        tmp_path = Path(tmp_name)
        try:
            if isinstance(data, (bytes, bytearray)):
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
            else:
                os.close(fd)
                shutil.copyfile(os.fspath(data), tmp_path)
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    @staticmethod
    def _put_frames(target: Path, data: ArtifactData) -> None:
        if isinstance(data, (bytes, bytearray)):
            raise TypeError("frame sets are stored from image files, not bytes")
        if isinstance(data, (str, os.PathLike)):
            source = Path(data)
            frames = sorted(p for p in source.iterdir() if p.suffix == FRAME_SUFFIX)
        else:
            frames = sorted(Path(p) for p in data)
        staging = Path(tempfile.mkdtemp(prefix=f".{target.name}.", dir=target.parent))
        try:
            for frame in frames:
                shutil.copyfile(frame, staging / frame.name)
            if target.exists():
                shutil.rmtree(target)
            os.replace(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

    def size_of(self, category) -> int:
        return _dir_size(self.category_dir(category))

    def count_of(self, category) -> int:
        path = self.category_dir(category)
        if not path.is_dir():
            return 0
        return sum(1 for entry in path.iterdir() if not entry.name.startswith("."))

    def purge(self, category="all") -> PurgeResult:
        if str(getattr(category, "value", category)) == "all":
            targets = ALL_CATEGORIES
        else:
            targets = (_coerce_category(category),)
        count = 0
        size = 0
        for target in targets:
            path = self.category_dir(target)
            if not path.exists():
                continue
            size += self.size_of(target)
            count += self.count_of(target)
            shutil.rmtree(path)
            logger.info("[CACHE] purged category=%s", target.value)
        return PurgeResult(count=count, size=size)

    def stats(self) -> dict[str, dict[str, int | str]]:
        summary: dict[str, dict[str, int | str]] = {}
        total_size = 0
        total_count = 0
        for category in ALL_CATEGORIES:
            size = self.size_of(category)
            count = self.count_of(category)
            total_size += size
            total_count += count
            summary[category.value] = {"count": count, "size": size, "sizeFormatted": format_bytes(size)}
        summary["total"] = {"count": total_count, "size": total_size, "sizeFormatted": format_bytes(total_size)}
        return summary
