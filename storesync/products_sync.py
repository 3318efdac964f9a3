from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from pydantic import BaseModel, Field
from .collections_sync import CollectionIndex
from .describe import DescriptionWriter
from .errors import CommerceApiError
from .media import collect_image_urls, resolve_folder, resolve_media, tag_variant_options
from .models import (
    DeleteSummary,
    MediaResolution,
    ProductGroup,
    ProductResult,
    ProductSyncSummary,
    SimpleProduct,
    SourceRow,
)
from .surecart import SureCartClient
from .transform import (
    build_product_groups,
    price_payload,
    product_payload,
    representative_price,
    to_product_write,
)
from .utils import RateLimiter, chunked, get_logger
from .wp import WordPressClient

logger = get_logger("products")


class ResetReport(BaseModel):
    products: DeleteSummary = Field(default_factory=DeleteSummary)
    variants: DeleteSummary = Field(default_factory=DeleteSummary)

    @property
    def success(self) -> bool:
        return self.products.failed == 0 and self.variants.failed == 0


class ProductSyncReport(BaseModel):
    summary: ProductSyncSummary = Field(default_factory=ProductSyncSummary)
    results: List[ProductResult] = Field(default_factory=list)
    reset: Optional[ResetReport] = None


async def delete_in_batches(
    ids: Sequence[str],
    delete: Callable[[str], Awaitable[object]],
    batch_size: int = 20,
    limiter: Optional[RateLimiter] = None,
    label: str = "item",
) -> DeleteSummary:
    summary = DeleteSummary(total=len(ids))
    batches = list(chunked(ids, batch_size))

    async def _delete(item_id: str) -> bool:
        try:
            await delete(item_id)
            return True
        except CommerceApiError as e:
            logger.error("Error deleting %s %s: %s", label, item_id, e)
            return False

    for n, batch in enumerate(batches, start=1):
        if limiter is not None:
            await limiter.acquire(len(batch))
        logger.info("Processing %s batch %s/%s (%s items)", label, n, len(batches), len(batch))
        done = await asyncio.gather(*(_delete(i) for i in batch))
        ok = sum(1 for d in done if d)
        summary.deleted += ok
        summary.failed += len(batch) - ok
    logger.info("%s deletion completed. Total: %s, Success: %s, Failed: %s", label.capitalize(), summary.total, summary.deleted, summary.failed)
    return summary


async def reset_products(client: SureCartClient, batch_size: int = 20, limiter: Optional[RateLimiter] = None) -> ResetReport:
    logger.info("Deleting existing products...")
    products = await client.list_all_products()
    report = ResetReport()
    report.products = await delete_in_batches([p.id for p in products], client.delete_product, batch_size, limiter, "product")
    variant_ids = await client.list_all_variant_ids()
    report.variants = await delete_in_batches(variant_ids, client.delete_variant, batch_size, limiter, "variant")
    return report


class CollectionResolver:
    """Finds or creates the collection a product's category maps to."""

    def __init__(self, client: SureCartClient, index: CollectionIndex) -> None:
        self.client = client
        self.index = index

    async def resolve(self, group: ProductGroup) -> Optional[str]:
        slug, name = group.category_slug, group.category_name
        if not slug and not name:
            return None
        found = self.index.by_slug(slug) or self.index.by_name(name)
        if found is not None:
            return found.id
        try:
            created = await self.client.create_collection({"name": name or slug, "slug": slug})
            self.index.add(created)
            logger.info("Created collection %s for category %s", created.id, name or slug)
            return created.id
        except CommerceApiError as e:
            logger.warning("Could not create collection %s: %s, searching by name", slug, e)
        try:
            matches = await self.client.search_collections(name or slug)
        except CommerceApiError as e:
            logger.error("Collection search for %s failed: %s", name or slug, e)
            return None
        if not matches:
            logger.error("No collection found for category %s", name or slug)
            return None
        self.index.add(matches[0])
        return matches[0].id


def variant_option_tags(groups: Sequence[ProductGroup], media: MediaResolution) -> List[Tuple[int, str]]:
    tags: List[Tuple[int, str]] = []
    for g in groups:
        if g.is_simple:
            continue
        for v in g.variants:
            rec = media.get(v.image_url)
            if rec is not None and v.option_1:
                tags.append((rec.id, v.option_1))
    return tags


async def prepare_media(wp: Optional[WordPressClient], groups: Sequence[ProductGroup], folder_name: str) -> MediaResolution:
    urls = collect_image_urls(*(g.image_urls() for g in groups))
    if wp is None:
        logger.warning("Content service not configured, %s images left unresolved", len(urls))
        return MediaResolution(total=len(urls))
    folder_id = await resolve_folder(wp, folder_name)
    media = await resolve_media(wp, urls, folder_id)
    tagged = await tag_variant_options(wp, variant_option_tags(groups, media))
    if tagged:
        logger.info("Tagged %s media items with variant options", tagged)
    return media


async def write_product(client: SureCartClient, group: ProductGroup, media: MediaResolution, collection_id: Optional[str]) -> ProductResult:
    write = to_product_write(group)
    result = ProductResult(name=group.display_name, slug=group.slug, success=False, collection_id=collection_id)
    try:
        created = await client.create_product(product_payload(write, media, collection_id))
    except CommerceApiError as e:
        logger.error("Failed to create product %s: %s %s", group.display_name, e, e.status)
        result.error = str(e)
        return result
    result.product_id = created.get("id")
    result.success = True
    logger.info("Product created: %s", result.product_id)

    lowest = write.price_cents if isinstance(write, SimpleProduct) else representative_price(group.variants)
    if not lowest:
        logger.warning("Product %s has no valid price. Skipping fallback price creation.", group.display_name)
        return result
    try:
        price = await client.create_price(price_payload(result.product_id, lowest))
        result.price_id = price.get("id")
    except CommerceApiError as e:
        logger.error("Failed to create fallback price for product %s: %s", group.display_name, e)
    return result


async def sync_products(
    client: SureCartClient,
    rows: Sequence[SourceRow],
    *,
    wp: Optional[WordPressClient] = None,
    writer: Optional[DescriptionWriter] = None,
    media_folder: str = "SureCart",
    key_column: str = "Handle",
    slug_mode: str = "key",
    reset: bool = True,
    delete_batch_size: int = 20,
    delete_limiter: Optional[RateLimiter] = None,
) -> ProductSyncReport:
    groups = build_product_groups(rows, key_column=key_column, slug_mode=slug_mode)
    logger.info("Grouped %s rows into %s products", len(rows), len(groups))
    report = ProductSyncReport()

    if reset:
        report.reset = await reset_products(client, batch_size=delete_batch_size, limiter=delete_limiter)

    media = await prepare_media(wp, groups, media_folder)
    resolver = CollectionResolver(client, CollectionIndex(await client.list_all_collections()))

    for group in groups:
        logger.info("Processing product: %s", group.display_name)
        if writer is not None:
            group = await writer.enrich_product(group)
        collection_id = await resolver.resolve(group)
        report.results.append(await write_product(client, group, media, collection_id))

    s = report.summary
    s.total_products = len(report.results)
    s.successful_products = sum(1 for r in report.results if r.success)
    s.total_images = media.total
    s.uploaded_images = media.uploaded
    s.existing_images = media.existing
    s.failed_images = media.failed
    logger.info("Created %s/%s products successfully", s.successful_products, s.total_products)
    return report
