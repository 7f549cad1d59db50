"""Tests for list and file management."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.db_models import ListItem, ListRecord, ListStatus, Title
from app.errors import FileAccessDenied, FileNotFound, ListNotFound
from app.models import PageQuery
from app.services.files import FileService, LocalStorage
from app.services.list_processor import ListProcessor
from app.services.lists import ListService
from app.services.persons import PersonResolver
from app.services.titles import TitleResolver


class RecordingPool:
    """Stands in for the worker pool and records scheduled imports."""

    def __init__(self) -> None:
        self.queued: list[str] = []

    def enqueue(self, list_id: str) -> None:
        self.queued.append(list_id)


def _build(database, tmp_path):
    files = FileService(database.session_factory, LocalStorage(tmp_path / "storage"))
    pool = RecordingPool()
    service = ListService(database.session_factory, files, pool)  # type: ignore[arg-type]
    return files, pool, service


@pytest.mark.anyio("asyncio")
async def test_create_queues_import_and_returns_processing(database, tmp_path) -> None:
    files, pool, service = _build(database, tmp_path)
    uploaded = await files.upload("ratings.csv", b"Const,Title,Genres\n", "alice")

    summary = await service.create("My ratings", uploaded.id, "alice")

    assert summary.status == ListStatus.PROCESSING.value
    assert summary.total_items == 0
    assert pool.queued == [summary.id]


@pytest.mark.anyio("asyncio")
async def test_create_rejects_files_of_other_users(database, tmp_path) -> None:
    files, pool, service = _build(database, tmp_path)
    uploaded = await files.upload("ratings.csv", b"data", "alice")

    with pytest.raises(FileAccessDenied, match="File not found or access denied"):
        await service.create("Stolen", uploaded.id, "mallory")
    with pytest.raises(FileAccessDenied):
        await service.create("Missing", "no-such-file", "alice")
    assert pool.queued == []


@pytest.mark.anyio("asyncio")
async def test_find_all_filters_and_pages(database, tmp_path) -> None:
    files, _, service = _build(database, tmp_path)
    for name in ("Movies 2023", "Movies 2024", "Series"):
        uploaded = await files.upload("ratings.csv", b"x", "alice")
        await service.create(name, uploaded.id, "alice")
    uploaded = await files.upload("ratings.csv", b"x", "bob")
    await service.create("Movies of bob", uploaded.id, "bob")

    page = await service.find_all("alice", PageQuery(page=1, limit=1), name="movies")

    assert page.total_results == 2
    assert page.total_pages == 2
    assert page.results[0].name in {"Movies 2023", "Movies 2024"}


@pytest.mark.anyio("asyncio")
async def test_find_one_and_rename_are_owner_scoped(database, tmp_path) -> None:
    files, _, service = _build(database, tmp_path)
    uploaded = await files.upload("ratings.csv", b"x", "alice")
    created = await service.create("Old", uploaded.id, "alice")

    renamed = await service.rename(created.id, "alice", "New")

    assert renamed.name == "New"
    assert (await service.find_one(created.id, "alice")).name == "New"
    with pytest.raises(ListNotFound, match=f"List with ID {created.id} not found"):
        await service.find_one(created.id, "bob")
    with pytest.raises(ListNotFound):
        await service.rename(created.id, "bob", "Hijacked")


@pytest.mark.anyio("asyncio")
async def test_delete_keeps_titles_shared_with_other_lists(
    app_settings, database, tmp_path
) -> None:
    files, _, service = _build(database, tmp_path)
    persons = PersonResolver(database.session_factory, None)
    titles = TitleResolver(app_settings, database.session_factory, None, persons)
    processor = ListProcessor(app_settings, database.session_factory, files, titles)
    content = b"Const,Title,Genres\ntt1,Shared,Drama\n"
    first_file = await files.upload("a.csv", content, "alice")
    second_file = await files.upload("b.csv", content, "alice")
    first = await service.create("First", first_file.id, "alice")
    second = await service.create("Second", second_file.id, "alice")
    await processor.process(first.id)
    await processor.process(second.id)

    await service.delete(first.id, "alice")

    with pytest.raises(ListNotFound):
        await service.find_one(first.id, "alice")
    with pytest.raises(FileNotFound):
        await files.find_one(first_file.id)
    assert not (tmp_path / "storage" / first_file.key).exists()
    async with database.session_factory() as session:
        assert await session.scalar(select(func.count(Title.id))) == 1
        remaining = await session.scalar(
            select(func.count(ListItem.id)).where(ListItem.list_id == second.id)
        )
    assert remaining == 1


@pytest.mark.anyio("asyncio")
async def test_download_strips_byte_order_mark(database, tmp_path) -> None:
    files, _, _ = _build(database, tmp_path)
    uploaded = await files.upload("bom.csv", "\ufeffConst\n".encode("utf-8"), "alice")

    assert await files.download(uploaded.id) == "Const\n"


@pytest.mark.anyio("asyncio")
async def test_uploaded_names_are_sanitised_for_storage(database, tmp_path) -> None:
    files, _, _ = _build(database, tmp_path)

    uploaded = await files.upload("../../etc/passwd", b"x", "alice")

    assert uploaded.name == "../../etc/passwd"
    assert "/" not in uploaded.key
    assert (tmp_path / "storage" / uploaded.key).exists()


@pytest.mark.anyio("asyncio")
async def test_resume_pending_requeues_unfinished_imports(database, tmp_path) -> None:
    files, pool, service = _build(database, tmp_path)
    uploaded = await files.upload("ratings.csv", b"x", "alice")
    pending = await service.create("Pending", uploaded.id, "alice")
    done = await service.create("Done", uploaded.id, "alice")
    async with database.session_factory() as session:
        record = await session.get(ListRecord, done.id)
        record.status = ListStatus.COMPLETED.value
        await session.commit()
    pool.queued.clear()

    resumed = await service.resume_pending()

    assert resumed == [pending.id]
    assert pool.queued == [pending.id]
