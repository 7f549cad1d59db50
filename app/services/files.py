"""Uploaded file records and their stored content."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FileRecord
from ..errors import FileAccessDenied, FileNotFound

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class LocalStorage:
    """Stores blobs as files below a base directory."""

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        path = (self._base_dir / key).resolve()
        if self._base_dir.resolve() not in path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    async def save(self, key: str, content: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)

    async def read(self, key: str) -> bytes:
        return await asyncio.to_thread(self._path(key).read_bytes)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, True)


class FileService:
    """Upload, ownership checks, download and deletion of user files."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: LocalStorage,
    ):
        self._session_factory = session_factory
        self._storage = storage

    async def upload(
        self,
        name: str,
        content: bytes,
        user_id: str,
        *,
        content_type: str = "text/csv",
    ) -> FileRecord:
        safe_name = _UNSAFE_NAME_RE.sub("-", name).strip("-") or "upload.csv"
        key = f"{uuid.uuid4().hex}-{safe_name}"
        await self._storage.save(key, content)
        record = FileRecord(
            user_id=user_id,
            name=name,
            key=key,
            size=len(content),
            content_type=content_type,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        logger.info("Stored file %s (%s bytes) for user %s", record.id, len(content), user_id)
        return record

    async def find_one(self, file_id: str) -> FileRecord:
        async with self._session_factory() as session:
            record = await session.get(FileRecord, file_id)
        if record is None:
            raise FileNotFound(file_id)
        return record

    async def find_owned(self, file_id: str, user_id: str) -> FileRecord:
        """Return the file if ``user_id`` owns it."""

        try:
            record = await self.find_one(file_id)
        except FileNotFound as exc:
            raise FileAccessDenied(file_id) from exc
        if record.user_id != user_id:
            raise FileAccessDenied(file_id)
        return record

    async def download(self, file_id: str) -> str:
        """Return the stored content of a file decoded as UTF-8 text."""

        record = await self.find_one(file_id)
        content = await self._storage.read(record.key)
        return content.decode("utf-8-sig")

    async def delete(self, file_id: str) -> None:
        async with self._session_factory() as session:
            record = await session.get(FileRecord, file_id)
            if record is None:
                raise FileNotFound(file_id)
            await session.delete(record)
            await session.commit()
        try:
            await self._storage.delete(record.key)
        except OSError:
            logger.exception("Failed to delete stored content for file %s", file_id)
