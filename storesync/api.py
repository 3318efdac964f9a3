"""
HTTP entry points for the sync pipelines.
Every response carries ``success`` and ``message``; fatal errors become HTTP 500.
"""
from __future__ import annotations
from typing import AsyncIterator, List, Optional
import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from .collections_sync import delete_all_collections, delete_collections_by_id, refresh_collection, sync_collections
from .config import Settings, get_settings
from .describe import DescriptionWriter
from .errors import NotFoundError, SyncError
from .products_sync import reset_products, sync_products
from .source import fetch_rows
from .surecart import SureCartClient
from .utils import RateLimiter, get_logger
from .wp import WordPressClient

logger = get_logger("api")


class CollectionRefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_id: Optional[str] = Field(None, alias="collectionId")


class CollectionDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_ids: List[str] = Field(default_factory=list, alias="collectionIds")


# Dependencies, overridden in tests

def get_app_settings() -> Settings:
    return get_settings()


def get_transport() -> Optional[httpx.AsyncBaseTransport]:
    return None


async def get_source_client(
    settings: Settings = Depends(get_app_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(timeout=settings.requests_timeout, follow_redirects=True, transport=transport)
    try:
        yield client
    finally:
        await client.aclose()


async def get_surecart(
    settings: Settings = Depends(get_app_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> AsyncIterator[SureCartClient]:
    client = SureCartClient.from_settings(settings, transport=transport)
    try:
        yield client
    finally:
        await client.aclose()


async def get_wordpress(
    settings: Settings = Depends(get_app_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_transport),
) -> AsyncIterator[Optional[WordPressClient]]:
    if not settings.media_enabled:
        logger.warning("WP_URL / WP_USERNAME / WP_APP_PASSWORD not set, media upload disabled")
        yield None
        return
    client = WordPressClient.from_settings(settings, transport=transport)
    try:
        yield client
    finally:
        await client.aclose()


def get_writer(settings: Settings = Depends(get_app_settings)) -> DescriptionWriter:
    return DescriptionWriter.from_settings(settings)


def _failure(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    app = FastAPI(
        title="storesync",
        description="Synchronizes products, collections and media from spreadsheets into SureCart",
        version="0.1.0",
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _failure(404, str(exc))

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _failure(500, f"{request.method} {request.url.path} failed", str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
        return _failure(500, f"{request.method} {request.url.path} failed", str(exc) or type(exc).__name__)

    @app.post("/sync-product")
    async def sync_product_route(
        settings: Settings = Depends(get_app_settings),
        http: httpx.AsyncClient = Depends(get_source_client),
        client: SureCartClient = Depends(get_surecart),
        wp: Optional[WordPressClient] = Depends(get_wordpress),
        writer: DescriptionWriter = Depends(get_writer),
    ):
        logger.info("Starting product sync")
        rows = await fetch_rows(settings.products_file_url, client=http)
        report = await sync_products(
            client,
            rows,
            wp=wp,
            writer=writer,
            media_folder=settings.media_folder_name,
            key_column=settings.product_key_column,
            slug_mode=settings.product_slug_mode,
            delete_batch_size=settings.delete_batch_size,
            delete_limiter=RateLimiter.per_batch(settings.delete_batch_size, settings.delete_batch_interval),
        )
        s = report.summary
        return {
            "success": True,
            "message": f"Processed {s.successful_products} of {s.total_products} products",
            "summary": s.model_dump(by_alias=True),
            "results": [r.model_dump() for r in report.results],
        }

    @app.delete("/sync-product")
    async def reset_products_route(
        settings: Settings = Depends(get_app_settings),
        client: SureCartClient = Depends(get_surecart),
    ):
        report = await reset_products(
            client,
            batch_size=settings.delete_batch_size,
            limiter=RateLimiter.per_batch(settings.delete_batch_size, settings.delete_batch_interval),
        )
        return {
            "success": report.success,
            "message": "All products and variants deleted" if report.success else "Some deletions failed",
            "products": report.products.model_dump(),
            "variants": report.variants.model_dump(),
        }

    @app.post("/sync-collections")
    async def sync_collections_route(
        delete_existing: bool = Query(False, alias="deleteExisting"),
        skip_updates: bool = Query(False, alias="skipUpdates"),
        settings: Settings = Depends(get_app_settings),
        http: httpx.AsyncClient = Depends(get_source_client),
        client: SureCartClient = Depends(get_surecart),
        wp: Optional[WordPressClient] = Depends(get_wordpress),
        writer: DescriptionWriter = Depends(get_writer),
    ):
        rows = await fetch_rows(settings.collections_file_url, client=http)
        report = await sync_collections(
            client,
            rows,
            writer=writer,
            wp=wp,
            media_folder=settings.media_folder_name,
            delete_existing=delete_existing,
            skip_updates=skip_updates,
            delete_limiter=RateLimiter.per_batch(1, settings.collection_delete_interval),
        )
        s = report.summary
        return {
            "success": True,
            "message": f"Synced {s.total_collections} collections",
            "summary": s.model_dump(by_alias=True),
            "collections": report.collections(),
        }

    @app.get("/sync-collections")
    async def read_collections_route(
        settings: Settings = Depends(get_app_settings),
        http: httpx.AsyncClient = Depends(get_source_client),
    ):
        rows = await fetch_rows(settings.collections_file_url, client=http)
        return {"success": True, "message": f"Fetched {len(rows)} rows", "data": rows}

    @app.patch("/sync-collections")
    async def refresh_collection_route(
        body: Optional[CollectionRefreshRequest] = None,
        settings: Settings = Depends(get_app_settings),
        http: httpx.AsyncClient = Depends(get_source_client),
        client: SureCartClient = Depends(get_surecart),
        writer: DescriptionWriter = Depends(get_writer),
    ):
        if body is None or not body.collection_id:
            return _failure(400, "collectionId is required")
        rows = await fetch_rows(settings.collections_file_url, client=http)
        updated = await refresh_collection(client, rows, body.collection_id, writer=writer)
        return {"success": True, "message": f"Collection {updated['slug']} updated", "collection": updated}

    @app.delete("/sync-collections")
    async def delete_collections_route(
        all_: bool = Query(False, alias="all"),
        body: Optional[CollectionDeleteRequest] = None,
        settings: Settings = Depends(get_app_settings),
        client: SureCartClient = Depends(get_surecart),
    ):
        limiter = RateLimiter.per_batch(1, settings.collection_delete_interval)
        if all_:
            summary = await delete_all_collections(client, limiter=limiter)
        elif body is not None and body.collection_ids:
            summary = await delete_collections_by_id(client, body.collection_ids, limiter=limiter)
        else:
            return _failure(400, "Pass all=true or a non-empty collectionIds list")
        return {
            "success": summary.failed == 0,
            "message": f"Deleted {summary.deleted} of {summary.total} collections",
            "deleted": summary.deleted,
            "errors": summary.failed,
        }

    return app


app = create_app()
