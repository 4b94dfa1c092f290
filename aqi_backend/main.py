# file : aqi_backend/main.py

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request

from aqi_backend.aqi import aqi_category, aqi_description
from aqi_backend.alerts import AlertDispatcher
from aqi_backend.cache import ResolutionCache
from aqi_backend.config import Settings, load_settings
from aqi_backend.database import InfluxStore, InMemoryStore
from aqi_backend.engine import ResolutionEngine
from aqi_backend.errors import AqiServiceError, InvalidCityError, InvalidRangeError, StoreUnavailableError
from aqi_backend.history import HistoryService
from aqi_backend.models import HistoryResult, Reading, ReadingOut
from aqi_backend.openaq_api import OpenAQProvider
from aqi_backend.scheduler import RefreshScheduler
from aqi_backend.seeder import seed_historical_data
from aqi_backend.utils import utc_now

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def build_store(settings: Settings):
    if settings.store_backend == "influx" or (settings.store_backend == "auto" and settings.influx_configured):
        return InfluxStore.from_settings(settings)
    logging.warning("InfluxDB not configured, keeping readings in memory")
    return InMemoryStore()


def build_engine(settings: Settings, alerts: Optional[AlertDispatcher] = None) -> ResolutionEngine:
    return ResolutionEngine(
        store=build_store(settings),
        provider=OpenAQProvider.from_settings(settings),
        cache=ResolutionCache(ttl=settings.cache_ttl),
        recent_threshold=settings.recent_threshold,
        alert_sink=alerts,
        search_limit=settings.search_limit,
    )


def to_out(reading: Reading) -> ReadingOut:
    return ReadingOut(
        category=aqi_category(reading.aqi_value),
        description=aqi_description(reading.aqi_value),
        **reading.model_dump(),
    )


def to_http_error(e: AqiServiceError) -> HTTPException:
    if isinstance(e, (InvalidCityError, InvalidRangeError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, StoreUnavailableError):
        return HTTPException(status_code=503, detail="Storage unavailable")
    return HTTPException(status_code=500, detail=str(e))


def create_app(settings: Optional[Settings] = None, engine: Optional[ResolutionEngine] = None) -> FastAPI:
    """
    Build the API. With ``engine`` given, it is used as-is and startup
    seeding is skipped; otherwise everything is wired from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Wire services, backfill history and start the refresh loop."""
        app_settings = settings or load_settings()
        logging.getLogger().setLevel(app_settings.log_level.upper())

        alerts = AlertDispatcher(app_settings.alert_subscriptions)
        app_engine = engine
        if app_engine is None:
            app_engine = build_engine(app_settings, alerts)
            if app_settings.seed_history:
                end = utc_now()
                start = end - timedelta(days=365 * app_settings.seed_years)
                await asyncio.to_thread(
                    seed_historical_data, app_engine.store, start, end,
                    batch_size=app_settings.seed_batch_size,
                    min_existing=app_settings.seed_min_records,
                )

        scheduler = RefreshScheduler(
            app_engine, app_settings.monitored_cities,
            interval_minutes=app_settings.refresh_interval_minutes,
            delay_seconds=app_settings.refresh_delay_seconds,
        )
        app.state.settings = app_settings
        app.state.engine = app_engine
        app.state.history = HistoryService(
            app_engine,
            default_days=app_settings.history_default_days,
            max_days=app_settings.history_max_days,
            max_points=app_settings.history_max_points,
            clock=app_engine.clock,
        )
        app.state.scheduler = scheduler
        if app_settings.refresh_enabled:
            scheduler.start()
        yield
        scheduler.stop(timeout=app_settings.refresh_delay_seconds + 5)
        alerts.shutdown()
        if isinstance(app_engine.store, InfluxStore):
            app_engine.store.close()

    app = FastAPI(
        title="Air Quality Index",
        description="City AQI with graceful degradation when the upstream provider is unavailable.",
        version="0.1",
        lifespan=lifespan,
    )

    @app.get("/healthz")
    def healthz(request: Request) -> Dict[str, Any]:
        try:
            records = request.app.state.engine.store.count()
        except StoreUnavailableError as e:
            raise to_http_error(e)
        return {"status": "ok", "records": records}

    @app.get("/aqi/current/{city}", response_model=ReadingOut)
    def current(city: str, request: Request):
        """Current AQI for a city; never fails for a valid name unless storage is down."""
        try:
            return to_out(request.app.state.engine.resolve(city))
        except AqiServiceError as e:
            raise to_http_error(e)

    @app.get("/aqi/cities")
    def cities(request: Request) -> Dict[str, Any]:
        try:
            names = request.app.state.engine.list_cities()
        except AqiServiceError as e:
            raise to_http_error(e)
        return {"cities": names, "count": len(names)}

    @app.get("/aqi/search")
    def search(request: Request, query: str = Query(..., description="Part of a city name")) -> Dict[str, Any]:
        try:
            names = request.app.state.engine.search_cities(query)
        except AqiServiceError as e:
            raise to_http_error(e)
        return {"query": query, "cities": names, "found": len(names)}

    @app.post("/aqi/cities/add")
    def add_city(request: Request, city: str = Query(..., description="City to start monitoring")) -> Dict[str, Any]:
        engine_ = request.app.state.engine
        try:
            if not engine_.add_city(city):
                return {"success": False, "message": "Failed to add city"}
            request.app.state.scheduler.monitor(city)
            reading = engine_.resolve(city)
        except AqiServiceError as e:
            raise to_http_error(e)
        return {"success": True, "message": "City added successfully", "data": to_out(reading)}

    @app.get("/aqi/multiple")
    def multiple(request: Request, cities: List[str] = Query(..., description="Cities to resolve")) -> Dict[str, Any]:
        try:
            resolved = request.app.state.engine.resolve_many(cities)
        except AqiServiceError as e:
            raise to_http_error(e)
        return {"data": {city: to_out(reading) for city, reading in resolved.items()}, "count": len(resolved)}

    @app.get("/aqi/historical/{city}", response_model=HistoryResult)
    def historical(
        city: str,
        request: Request,
        start_date: Optional[datetime] = Query(None, description="ISO start; defaults to 90 days before end"),
        end_date: Optional[datetime] = Query(None, description="ISO end; defaults to now"),
    ):
        try:
            return request.app.state.history.query(city, start_date, end_date)
        except AqiServiceError as e:
            raise to_http_error(e)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
