"""Entry point for the ListLens FastAPI service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from typing import Annotated, Iterator, TypeVar

import httpx
from fastapi import FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Database
from .db_models import PersonRole, TitleKind
from .errors import ListNotReady
from .models import (
    MAX_LIMIT,
    CreateListRequest,
    FileSummary,
    KindName,
    ListSummary,
    Page,
    PageQuery,
    PersonStat,
    RenameListRequest,
    RoleName,
    RuntimeStats,
    TitleSummary,
    UpcomingTitle,
)
from .services.analytics import AnalyticsService
from .services.files import FileService, LocalStorage
from .services.list_processor import ImportWorkerPool, ListProcessor
from .services.lists import ListService
from .services.maintenance import MaintenanceService
from .services.persons import PersonResolver
from .services.rate_limit import AsyncRateLimiter
from .services.titles import TitleResolver
from .services.tmdb import TMDBClient

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ServiceT = TypeVar("ServiceT")

UserId = Annotated[str, Header(alias="X-User-Id", min_length=1)]
PageNumber = Annotated[int, Query(ge=1)]
PageLimit = Annotated[int, Query(ge=1, le=MAX_LIMIT)]


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb: TMDBClient | None = None
    if settings.tmdb_token:
        limiter = AsyncRateLimiter(
            settings.tmdb_rate_limit, capacity=settings.tmdb_rate_burst
        )
        tmdb = TMDBClient(settings, tmdb_http_client, limiter)
    else:
        logger.warning("TMDB_TOKEN is not set; imported titles will not be enriched")

    file_service = FileService(
        database.session_factory, LocalStorage(settings.storage_dir)
    )
    person_resolver = PersonResolver(database.session_factory, tmdb)
    title_resolver = TitleResolver(
        settings, database.session_factory, tmdb, person_resolver
    )
    processor = ListProcessor(
        settings, database.session_factory, file_service, title_resolver
    )
    workers = ImportWorkerPool(processor, workers=settings.import_workers)
    maintenance = MaintenanceService(settings, database.session_factory, tmdb)

    fastapi_app.state.database = database
    fastapi_app.state.file_service = file_service
    list_service = ListService(database.session_factory, file_service, workers)
    fastapi_app.state.list_service = list_service
    fastapi_app.state.analytics_service = AnalyticsService(database.session_factory)
    await workers.start()
    await list_service.resume_pending()
    await maintenance.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await maintenance.stop()
        await workers.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Imports rated-title exports and serves viewing analytics",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _get_service(
    fastapi_app: FastAPI, name: str, service_type: type[ServiceT]
) -> ServiceT:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, service_type):
        raise RuntimeError(f"{service_type.__name__} not initialised")
    return service


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP responses."""

    try:
        yield
    except ListNotReady as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    def lists() -> ListService:
        return _get_service(fastapi_app, "list_service", ListService)

    def files() -> FileService:
        return _get_service(fastapi_app, "file_service", FileService)

    def analytics() -> AnalyticsService:
        return _get_service(fastapi_app, "analytics_service", AnalyticsService)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/files", status_code=201)
    async def upload_file(
        request: Request,
        user_id: UserId,
        name: Annotated[str, Query(min_length=1, max_length=255)] = "ratings.csv",
    ) -> FileSummary:
        content = await request.body()
        if not content:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        record = await files().upload(name, content, user_id)
        return FileSummary.model_validate(record)

    @fastapi_app.post("/api/lists", status_code=201)
    async def create_list(user_id: UserId, payload: CreateListRequest) -> ListSummary:
        with _domain_errors():
            return await lists().create(payload.name, payload.file_id, user_id)

    @fastapi_app.get("/api/lists")
    async def find_lists(
        user_id: UserId,
        page: PageNumber = 1,
        limit: PageLimit = 10,
        name: str | None = None,
    ) -> Page[ListSummary]:
        query = PageQuery(page=page, limit=limit)
        return await lists().find_all(user_id, query, name=name)

    @fastapi_app.get("/api/lists/{list_id}")
    async def get_list(list_id: str, user_id: UserId) -> ListSummary:
        with _domain_errors():
            record = await lists().find_one(list_id, user_id)
        return ListSummary.model_validate(record)

    @fastapi_app.patch("/api/lists/{list_id}")
    async def rename_list(
        list_id: str, user_id: UserId, payload: RenameListRequest
    ) -> ListSummary:
        with _domain_errors():
            return await lists().rename(list_id, user_id, payload.name)

    @fastapi_app.delete("/api/lists/{list_id}", status_code=204)
    async def delete_list(list_id: str, user_id: UserId) -> Response:
        with _domain_errors():
            await lists().delete(list_id, user_id)
        return Response(status_code=204)

    @fastapi_app.get("/api/lists/{list_id}/stats/genres")
    async def genre_stats(list_id: str, user_id: UserId) -> dict[str, int]:
        with _domain_errors():
            return await analytics().genre_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/types")
    async def kind_stats(list_id: str, user_id: UserId) -> dict[str, int]:
        with _domain_errors():
            return await analytics().kind_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/ratings")
    async def rating_stats(
        list_id: str,
        user_id: UserId,
        genre: str | None = None,
        year: int | None = None,
        kind: Annotated[KindName | None, Query(alias="type")] = None,
    ) -> dict[int, int]:
        with _domain_errors():
            return await analytics().rating_stats(
                list_id,
                user_id,
                genre=genre,
                year=year,
                kind=TitleKind(kind) if kind else None,
            )

    @fastapi_app.get("/api/lists/{list_id}/stats/years")
    async def year_stats(list_id: str, user_id: UserId) -> dict[int, int]:
        with _domain_errors():
            return await analytics().year_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/runtime")
    async def runtime_stats(list_id: str, user_id: UserId) -> RuntimeStats:
        with _domain_errors():
            return await analytics().runtime_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/countries")
    async def country_stats(list_id: str, user_id: UserId) -> dict[str, int]:
        with _domain_errors():
            return await analytics().country_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/companies")
    async def company_stats(list_id: str, user_id: UserId) -> dict[str, int]:
        with _domain_errors():
            return await analytics().company_stats(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/stats/persons")
    async def person_stats(
        list_id: str,
        user_id: UserId,
        role: RoleName = "actor",
        page: PageNumber = 1,
        limit: PageLimit = 10,
    ) -> Page[PersonStat]:
        query = PageQuery(page=page, limit=limit)
        with _domain_errors():
            return await analytics().person_stats(
                list_id, user_id, PersonRole(role), query
            )

    @fastapi_app.get("/api/lists/{list_id}/media")
    async def list_titles(
        list_id: str,
        user_id: UserId,
        page: PageNumber = 1,
        limit: PageLimit = 10,
    ) -> Page[TitleSummary]:
        query = PageQuery(page=page, limit=limit)
        with _domain_errors():
            return await analytics().titles(list_id, user_id, query)

    @fastapi_app.get("/api/lists/{list_id}/upcoming")
    async def upcoming_series(
        list_id: str,
        user_id: UserId,
        page: PageNumber = 1,
        limit: PageLimit = 10,
    ) -> Page[UpcomingTitle]:
        query = PageQuery(page=page, limit=limit)
        with _domain_errors():
            return await analytics().upcoming_series(list_id, user_id, query)

    @fastapi_app.get("/api/lists/{list_id}/genres")
    async def list_genres(list_id: str, user_id: UserId) -> list[str]:
        with _domain_errors():
            return await analytics().genres(list_id, user_id)

    @fastapi_app.get("/api/lists/{list_id}/years")
    async def list_years(list_id: str, user_id: UserId) -> list[int]:
        with _domain_errors():
            return await analytics().years(list_id, user_id)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
