"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and owns the background loops.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from companion.controllers.campus_controller import router as campus_router
from companion.controllers.logtime_controller import router as logtime_router
from companion.controllers.profile_controller import router as profile_router
from companion.controllers.search_controller import router as search_router
from companion.controllers.slots_controller import router as slots_router
from companion.controllers.system_controller import router as system_router
from companion.domain.constraints import CacheConfig, validate_cache_config
from companion.repository.api_client import IntraAPIClient
from companion.repository.blob_store import FileBlobStore
from companion.services.auth_service import AuthService
from companion.services.campus_service import CampusLoaders, CampusService, build_campus_refresher
from companion.services.location_service import LocationStatsService
from companion.services.profile_service import ProfileService, build_profile_refresher
from companion.services.search_service import SearchService
from companion.services.slots_service import SlotsService
from companion.services.ttl_cache import TTLCache, build_cache_sweeper
from companion.utils.clock import Clock, SystemClock, load_time_zone
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger
from companion.utils.periodic import PeriodicTask


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    auth_service: Optional[AuthService] = None,
    client: Optional[IntraAPIClient] = None,
    cache: Optional[TTLCache] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every collaborator can be injected; anything omitted is built from
    settings. All services live on app.state for dependency resolution.
    """
    if settings is None:
        settings = get_settings()
    cache_config = CacheConfig.from_settings(settings)
    validate_cache_config(cache_config)
    if clock is None:
        clock = SystemClock(load_time_zone(settings.time_zone))

    # --- Auth + HTTP client ---
    if auth_service is None:
        auth_service = AuthService(settings=settings, clock=clock)
    if client is None:
        client = IntraAPIClient(auth_service=auth_service, settings=settings)

    # --- Cache (write-through JSON document) ---
    if cache is None:
        cache = TTLCache(
            blob_store=FileBlobStore(settings.cache_path),
            clock=clock,
            default_ttl_seconds=cache_config.default_ttl_seconds,
        )

    # --- Services ---
    location_service = LocationStatsService(client=client, settings=settings, clock=clock)
    slots_service = SlotsService(client=client, cache=cache, settings=settings, clock=clock)
    profile_service = ProfileService(client=client, cache=cache, settings=settings, clock=clock)
    campus_loaders = CampusLoaders(
        CampusService(client=client, settings=settings, clock=clock),
        clock=clock,
        settings=settings,
    )
    search_service = SearchService(client=client, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start background loops before serving and cancel them on shutdown."""
        tasks = _background_tasks(app, settings)
        for task in tasks:
            task.start()
        app.state.background_tasks = tasks
        try:
            yield
        finally:
            for task in tasks:
                await task.stop()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    # --- Routers ---
    app.include_router(system_router)
    app.include_router(logtime_router)
    app.include_router(slots_router)
    app.include_router(profile_router)
    app.include_router(campus_router)
    app.include_router(search_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.clock = clock
    app.state.auth_service = auth_service
    app.state.api_client = client
    app.state.cache = cache
    app.state.location_service = location_service
    app.state.slots_service = slots_service
    app.state.profile_service = profile_service
    app.state.campus_loaders = campus_loaders
    app.state.search_service = search_service

    return app


def _background_tasks(app: FastAPI, settings: Settings) -> list[PeriodicTask]:
    """
    Loops owned by the lifespan:
      1. cache sweeper, always;
      2. token refresh, when a refresh token is stored;
      3. profile auto-refresh, when a login is known;
      4. campus dashboard auto-refresh, when a campus id is configured.
    """
    cache: TTLCache = app.state.cache
    auth_service: AuthService = app.state.auth_service
    profile_service: ProfileService = app.state.profile_service

    tasks = [build_cache_sweeper(cache, settings.cache_sweep_interval_seconds)]

    if auth_service.refresh_token is not None:
        tasks.append(
            PeriodicTask(
                name="token-refresh",
                action=auth_service.refresh_if_due,
                delay=auth_service.refresh_delay_seconds,
            )
        )

    login = settings.profile_login or auth_service.current_login
    if login:
        logger.info("Startup: profile auto-refresh enabled for %s", login)
        tasks.append(
            build_profile_refresher(
                profile_service,
                login,
                settings.profile_refresh_interval_seconds,
            )
        )

    if settings.campus_id is not None:
        campus_loaders: CampusLoaders = app.state.campus_loaders
        tasks.append(
            build_campus_refresher(
                campus_loaders.loader_for(settings.campus_id),
                settings.campus_refresh_interval_seconds,
            )
        )
    return tasks


# Module-level app object for uvicorn
app = create_app()
