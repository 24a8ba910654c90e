"""Session artifact collection and archive delivery."""

from __future__ import annotations

import abc
import asyncio
import io
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from zipfile import ZIP_DEFLATED, ZipFile

import aiofiles

from effort_logger.core.errors import PackagingFailure
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from effort_logger.modules.Cameras.camera_models import CapturedImage

from .counter_store import CounterStore


class ArchiveSink(abc.ABC):
    """Where finished sessions go. Both calls return a location description."""

    @abc.abstractmethod
    async def deliver_archive(self, filename: str, data: bytes) -> str:
        ...

    @abc.abstractmethod
    async def deliver_file(self, filename: str, data: bytes) -> str:
        ...


class DirectoryArchiveSink(ArchiveSink):
    """Writes deliveries into ``out_dir``; existing files are never overwritten."""

    def __init__(self, out_dir: Path, *, logger: LoggerLike = None) -> None:
        self.out_dir = Path(out_dir)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self.delivered: List[Path] = []

    async def deliver_archive(self, filename: str, data: bytes) -> str:
        return await self._write(filename, data)

    async def deliver_file(self, filename: str, data: bytes) -> str:
        return await self._write(filename, data)

    def _unique_path(self, filename: str) -> Path:
        candidate = self.out_dir / Path(filename).name
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self.out_dir / f"{stem} ({counter}){suffix}"
            counter += 1
        return candidate

    async def _write(self, filename: str, data: bytes) -> str:
        await asyncio.to_thread(self.out_dir.mkdir, parents=True, exist_ok=True)
        path = await asyncio.to_thread(self._unique_path, filename)
        async with aiofiles.open(path, 'xb') as fh:
            await fh.write(data)
        self.delivered.append(path)
        self._logger.info("Saved %s (%d bytes)", path, len(data))
        return str(path)


@dataclass(frozen=True, slots=True)
class ArchiveResult:
    name: str
    category: str
    counter: int
    image_count: int
    filenames: Tuple[str, ...]
    location: Optional[str] = None
    fallback: bool = False
    fallback_locations: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def filename(self) -> str:
        return f"{self.name}.zip"


def build_zip(images: Sequence[CapturedImage]) -> bytes:
    buffer = io.BytesIO()
    with ZipFile(buffer, 'w', ZIP_DEFLATED) as zipf:
        for image in images:
            zipf.writestr(image.filename, image.data)
    return buffer.getvalue()


class ArtifactCollector:
    """Accumulates a session's stills and packages them exactly once."""

    def __init__(self, counter: CounterStore, sink: ArchiveSink, *, logger: LoggerLike = None) -> None:
        self._counter = counter
        self._sink = sink
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._images: List[CapturedImage] = []
        self._lock = asyncio.Lock()
        self._finalizing = False
        self._result: Optional[ArchiveResult] = None

    @property
    def images(self) -> Tuple[CapturedImage, ...]:
        return tuple(self._images)

    @property
    def count(self) -> int:
        return len(self._images)

    @property
    def finalized(self) -> bool:
        return self._finalizing or self._result is not None

    @property
    def result(self) -> Optional[ArchiveResult]:
        return self._result

    def add(self, image: CapturedImage) -> bool:
        if self.finalized:
            self._logger.warning("Session already finalized; dropping %s", image.filename)
            return False
        self._images.append(image)
        self._logger.debug("Collected %s (%d total)", image.filename, len(self._images))
        return True

    async def finalize(self, category: str) -> ArchiveResult:
        async with self._lock:
            if self._result is not None:
                return self._result
            self._finalizing = True

            images = list(self._images)
            try:
                counter = await self._counter.increment(category)
            except Exception:
                self._finalizing = False
                raise
            name = f"{category}-{counter}"
            filenames = tuple(image.filename for image in images)

            try:
                location = await self._package(name, images)
            except PackagingFailure as exc:
                self._logger.error("Packaging %s failed (%s); delivering images individually", name, exc)
                locations = await self._deliver_individually(images)
                result = ArchiveResult(
                    name=name,
                    category=category,
                    counter=counter,
                    image_count=len(images),
                    filenames=filenames,
                    fallback=True,
                    fallback_locations=tuple(locations),
                    error=str(exc),
                )
            else:
                result = ArchiveResult(
                    name=name,
                    category=category,
                    counter=counter,
                    image_count=len(images),
                    filenames=filenames,
                    location=location,
                )
                self._logger.info("Archive %s delivered with %d image(s)", result.filename, len(images))

            self._images.clear()
            self._result = result
            return result

    async def _package(self, name: str, images: Sequence[CapturedImage]) -> str:
        try:
            data = await asyncio.to_thread(build_zip, images)
            return await self._sink.deliver_archive(f"{name}.zip", data)
        except Exception as exc:
            raise PackagingFailure(f"{type(exc).__name__}: {exc}") from exc

    async def _deliver_individually(self, images: Sequence[CapturedImage]) -> List[str]:
        locations: List[str] = []
        for image in images:
            try:
                locations.append(await self._sink.deliver_file(image.filename, image.data))
            except Exception:
                self._logger.exception("Failed to deliver %s", image.filename)
        return locations

    def reset(self) -> None:
        self._images.clear()
        self._finalizing = False
        self._result = None


__all__ = [
    "ArchiveResult",
    "ArchiveSink",
    "ArtifactCollector",
    "DirectoryArchiveSink",
    "build_zip",
]
