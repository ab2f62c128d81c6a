"""Read-only REST facade over the creator store.

Every response body is a JSON envelope of the form::

    {"success": bool, "data": ..., "error": str | None, "message": str | None}

List endpoints add `count` (and the paging parameters they were called with)
next to `data`. The only write is marking an alert read.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pumpfun_creator_tracker import __version__
from pumpfun_creator_tracker.config import Settings
from pumpfun_creator_tracker.storage import queries
from pumpfun_creator_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

CREATOR_SORTS = ("success_rate", "migrated_coins", "total_coins", "recent")
SEARCH_TYPES = ("creator", "coin", "all")


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": None, "error": error, "message": message},
    )


def _ok(data: Any, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data, "error": None, "message": None}
    body.update(extra)
    return body


def create_app(db: DatabaseManager, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application bound to one database manager.

    Args:
        db: Database manager shared with the pipeline.
        settings: Used for the CORS allow-list; defaults to allowing any origin.
    """
    app = FastAPI(title="pump.fun creator tracker", version=__version__)
    origins = settings.api.cors_origins if settings is not None else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid request", str(exc.errors()))

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
        return _error(500, "Internal server error", str(exc))

    @app.get("/api/health")
    async def health() -> Any:
        timestamp = datetime.now(UTC).isoformat()
        try:
            async with db.get_async_session() as session:
                await queries.health(session)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return JSONResponse(
                status_code=503,
                content={
                    "success": False,
                    "status": "unhealthy",
                    "database": "disconnected",
                    "timestamp": timestamp,
                    "error": str(e),
                },
            )
        return {
            "success": True,
            "status": "healthy",
            "database": "connected",
            "timestamp": timestamp,
            "version": __version__,
        }

    @app.get("/api/stats")
    async def stats() -> dict[str, Any]:
        async with db.get_async_session() as session:
            return _ok(await queries.system_stats(session))

    async def _list_creators(limit: int, offset: int, sort: str) -> dict[str, Any]:
        if sort not in CREATOR_SORTS:
            raise HTTPException(status_code=400, detail=f"Invalid sort: {sort}")
        async with db.get_async_session() as session:
            creators = await queries.list_creators(
                session, limit=limit, offset=offset, sort=sort  # type: ignore[arg-type]
            )
        return _ok(creators, count=len(creators), limit=limit, offset=offset)

    async def _creator_detail(key: str) -> dict[str, Any]:
        async with db.get_async_session() as session:
            creator = await queries.get_creator(session, key)
            if creator is None:
                # Social handles are stored lower-cased without the '@'.
                key = key.strip().lstrip("@").lower()
                creator = await queries.get_creator(session, key)
            if creator is None:
                raise HTTPException(status_code=404, detail="Creator not found")
            coins = await queries.list_coins_by_creator(session, key)
        return _ok({"creator": creator, "coins": coins})

    @app.get("/api/creators")
    async def list_creators(
        limit: int = Query(1000, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        sort: str = Query("success_rate"),
    ) -> dict[str, Any]:
        return await _list_creators(limit, offset, sort)

    @app.get("/api/creators/{key}")
    async def creator_detail(key: str) -> dict[str, Any]:
        return await _creator_detail(key)

    @app.get("/api/developers")
    async def list_developers(
        limit: int = Query(1000, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        sort: str = Query("success_rate"),
    ) -> dict[str, Any]:
        return await _list_creators(limit, offset, sort)

    @app.get("/api/developers/{address}")
    async def developer_detail(address: str) -> dict[str, Any]:
        return await _creator_detail(address)

    @app.get("/api/coins/recent")
    async def recent_coins(limit: int = Query(100, ge=1, le=1000)) -> dict[str, Any]:
        async with db.get_async_session() as session:
            coins = await queries.list_recent_coins(session, limit=limit)
        return _ok(coins, count=len(coins))

    @app.post("/api/coins/batch")
    async def coins_batch(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        mints = payload.get("mints")
        if not isinstance(mints, list) or not mints:
            raise HTTPException(status_code=400, detail="mints must be a non-empty array")
        if not all(isinstance(m, str) for m in mints):
            raise HTTPException(status_code=400, detail="mints must be strings")
        async with db.get_async_session() as session:
            found = await queries.get_coins_by_mints(session, mints)
        return _ok(found, count=len(found))

    @app.get("/api/coins/{mint}")
    async def coin_detail(mint: str) -> dict[str, Any]:
        async with db.get_async_session() as session:
            coin = await queries.get_coin(session, mint)
        if coin is None:
            raise HTTPException(status_code=404, detail="Coin not found")
        return _ok(coin)

    @app.get("/api/search")
    async def search(
        q: str | None = Query(None),
        type: str = Query("all"),
        limit: int = Query(50, ge=1, le=200),
    ) -> dict[str, Any]:
        if not q or not q.strip():
            raise HTTPException(status_code=400, detail="Query parameter q is required")
        if type not in SEARCH_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid search type: {type}")
        async with db.get_async_session() as session:
            found = await queries.search(
                session, q, search_type=type, limit=limit  # type: ignore[arg-type]
            )
        count = sum(len(v) for v in found.values())
        return _ok(found, count=count, query=q, type=type)

    @app.get("/api/alerts")
    async def alerts(
        limit: int = Query(50, ge=1, le=500),
        unread_only: bool = Query(False),
    ) -> dict[str, Any]:
        async with db.get_async_session() as session:
            items = await queries.list_alerts(session, limit=limit, unread_only=unread_only)
            unread = await queries.count_unread_alerts(session)
        return _ok(items, count=len(items), unread_count=unread)

    @app.get("/api/alerts/unread/count")
    async def unread_count() -> dict[str, Any]:
        async with db.get_async_session() as session:
            count = await queries.count_unread_alerts(session)
        return {"success": True, "count": count}

    @app.post("/api/alerts/{alert_id}/read")
    async def mark_read(alert_id: int) -> dict[str, Any]:
        async with db.get_async_session() as session:
            alert = await queries.mark_alert_read(session, alert_id)
        if alert is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return _ok(alert, message="Alert marked as read")

    return app
