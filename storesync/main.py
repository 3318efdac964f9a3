from __future__ import annotations
import asyncio
import json
import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Tuple
import typer
from rich import print as rprint
from .config import Settings, get_settings
from .errors import SyncError

if TYPE_CHECKING:
    from .surecart import SureCartClient
    from .wp import WordPressClient

app = typer.Typer(add_completion=False, help="CLI for syncing spreadsheet products and collections into SureCart")


@app.callback()
def main_callback(
    rate_limit: Optional[float] = typer.Option(
        None, "--rate-limit", help="Requests per second toward SureCart (override .env)"
    ),
    enrich: Optional[bool] = typer.Option(
        None, "--enrich/--no-enrich", help="Generate missing descriptions (override .env)"
    ),
    media_folder: Optional[str] = typer.Option(
        None, "--media-folder", help="WordPress media folder name (override .env)"
    ),
) -> None:
    if rate_limit is not None:
        os.environ["RATE_LIMIT_RPS"] = str(rate_limit)
    if enrich is not None:
        os.environ["ENRICH_DESCRIPTIONS"] = "true" if enrich else "false"
    if media_folder:
        os.environ["MEDIA_FOLDER_NAME"] = media_folder


@asynccontextmanager
async def _clients(settings: Settings) -> AsyncIterator[Tuple["SureCartClient", Optional["WordPressClient"]]]:
    from .surecart import SureCartClient
    from .wp import WordPressClient
    client = SureCartClient.from_settings(settings)
    wp = WordPressClient.from_settings(settings) if settings.media_enabled else None
    if wp is None:
        rprint("[yellow]WordPress credentials not set, media upload disabled[/yellow]")
    try:
        yield client, wp
    finally:
        await client.aclose()
        if wp is not None:
            await wp.aclose()


def _run(coro) -> object:
    try:
        return asyncio.run(coro)
    except SyncError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


async def _load_rows(url: str, settings: Settings):
    from .source import fetch_rows
    return await fetch_rows(url, timeout=settings.requests_timeout)


@app.command("sync-products")
def sync_products_cmd(
    file_url: Optional[str] = typer.Option(None, "--file-url", help="Products CSV URL (defaults to PRODUCTS_FILE_URL)"),
    no_reset: bool = typer.Option(False, "--no-reset", help="Keep existing products instead of deleting them first"),
) -> None:
    from .describe import DescriptionWriter
    from .products_sync import sync_products
    from .utils import RateLimiter
    settings = get_settings()

    async def run():
        rows = await _load_rows(file_url or settings.products_file_url, settings)
        async with _clients(settings) as (client, wp):
            return await sync_products(
                client,
                rows,
                wp=wp,
                writer=DescriptionWriter.from_settings(settings),
                media_folder=settings.media_folder_name,
                key_column=settings.product_key_column,
                slug_mode=settings.product_slug_mode,
                reset=not no_reset,
                delete_batch_size=settings.delete_batch_size,
                delete_limiter=RateLimiter.per_batch(settings.delete_batch_size, settings.delete_batch_interval),
            )

    report = _run(run())
    for r in report.results:
        if not r.success:
            rprint(f"[yellow]- {r.name}: {r.error}[/yellow]")
    rprint(report.summary.model_dump(by_alias=True))


@app.command("reset-products")
def reset_products_cmd(yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation")) -> None:
    from .products_sync import reset_products
    from .utils import RateLimiter
    if not yes:
        typer.confirm("Delete ALL products and variants from SureCart?", abort=True)
    settings = get_settings()

    async def run():
        async with _clients(settings) as (client, _):
            return await reset_products(
                client,
                batch_size=settings.delete_batch_size,
                limiter=RateLimiter.per_batch(settings.delete_batch_size, settings.delete_batch_interval),
            )

    report = _run(run())
    rprint({"products": report.products.model_dump(), "variants": report.variants.model_dump()})
    if not report.success:
        raise typer.Exit(code=1)


@app.command("sync-collections")
def sync_collections_cmd(
    file_url: Optional[str] = typer.Option(None, "--file-url", help="Collections CSV URL (defaults to COLLECTIONS_FILE_URL)"),
    delete_existing: bool = typer.Option(False, "--delete-existing", help="Delete every remote collection first"),
    skip_updates: bool = typer.Option(False, "--skip-updates", help="Skip the metadata update pass"),
) -> None:
    from .collections_sync import sync_collections
    from .describe import DescriptionWriter
    from .utils import RateLimiter
    settings = get_settings()

    async def run():
        rows = await _load_rows(file_url or settings.collections_file_url, settings)
        async with _clients(settings) as (client, wp):
            return await sync_collections(
                client,
                rows,
                writer=DescriptionWriter.from_settings(settings),
                wp=wp,
                media_folder=settings.media_folder_name,
                delete_existing=delete_existing,
                skip_updates=skip_updates,
                delete_limiter=RateLimiter.per_batch(1, settings.collection_delete_interval),
            )

    report = _run(run())
    for o in report.outcomes:
        if o.state in ("failed", "skipped"):
            rprint(f"[yellow]- {o.slug}: {o.state} ({o.error})[/yellow]")
    rprint(report.summary.model_dump(by_alias=True))


@app.command("delete-collections")
def delete_collections_cmd(
    all_: bool = typer.Option(False, "--all", help="Delete every remote collection"),
    ids: Optional[List[str]] = typer.Option(None, "--id", help="Collection id to delete (repeatable)"),
) -> None:
    from .collections_sync import delete_all_collections, delete_collections_by_id
    from .utils import RateLimiter
    if all_ == bool(ids):
        rprint("[red]Pass either --all or at least one --id[/red]")
        raise typer.Exit(code=2)
    settings = get_settings()
    limiter = RateLimiter.per_batch(1, settings.collection_delete_interval)

    async def run():
        async with _clients(settings) as (client, _):
            if all_:
                return await delete_all_collections(client, limiter=limiter)
            return await delete_collections_by_id(client, ids or [], limiter=limiter)

    summary = _run(run())
    rprint(summary.model_dump())
    if summary.failed:
        raise typer.Exit(code=1)


@app.command("preview-products")
def preview_products(
    file_url: Optional[str] = typer.Option(None, "--file-url"),
    limit: int = typer.Option(5, "--limit"),
) -> None:
    from .transform import build_product_groups, product_payload, to_product_write
    settings = get_settings()
    rows = _run(_load_rows(file_url or settings.products_file_url, settings))
    groups = build_product_groups(rows, key_column=settings.product_key_column, slug_mode=settings.product_slug_mode)
    rprint({"rows": len(rows), "products": len(groups)})
    for g in groups[:limit]:
        rprint(json.dumps(product_payload(to_product_write(g)), ensure_ascii=False, indent=2))


@app.command("preview-collections")
def preview_collections(file_url: Optional[str] = typer.Option(None, "--file-url")) -> None:
    from .collections_sync import CollectionIndex, plan_collection_order
    from .transform import build_collection_specs
    settings = get_settings()
    rows = _run(_load_rows(file_url or settings.collections_file_url, settings))
    layers, unresolved = plan_collection_order(build_collection_specs(rows), CollectionIndex())
    for depth, layer in enumerate(layers):
        rprint({"depth": depth, "collections": [s.slug for s in layer]})
    if unresolved:
        rprint({"unresolved": [f"{s.slug} -> {s.parent_slug}" for s in unresolved]})


@app.command("validate-products")
def validate_products(file_url: Optional[str] = typer.Option(None, "--file-url")) -> None:
    from .transform import build_product_groups, validate_group
    settings = get_settings()
    rows = _run(_load_rows(file_url or settings.products_file_url, settings))
    issues = [i for g in build_product_groups(rows, key_column=settings.product_key_column) for i in validate_group(g)]
    if issues:
        for i in issues:
            rprint(f"[yellow]- {i}[/yellow]")
        raise typer.Exit(code=1)
    rprint("[green]OK[/green] Validation passed")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    import uvicorn
    uvicorn.run("storesync.api:app", host=host, port=port, reload=reload)
