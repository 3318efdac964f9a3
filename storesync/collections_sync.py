from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from pydantic import BaseModel, Field
from .describe import DescriptionWriter
from .errors import CommerceApiError, NotFoundError
from .media import collect_image_urls, resolve_folder, resolve_media
from .models import (
    CollectionOutcome,
    CollectionSpec,
    CollectionSyncSummary,
    DeleteSummary,
    MediaResolution,
    RemoteCollection,
    SourceRow,
)
from .source import require_columns
from .surecart import SureCartClient
from .transform import build_collection_specs, collection_payload
from .utils import RateLimiter, get_logger
from .wp import WordPressClient

logger = get_logger("collections")

REQUIRED_COLUMNS = ("Slug", "Name")


class CollectionIndex:
    """Remote collections looked up by slug or name, case-insensitively."""

    def __init__(self, collections: Iterable[RemoteCollection] = ()) -> None:
        self._by_slug: Dict[str, RemoteCollection] = {}
        self._by_name: Dict[str, RemoteCollection] = {}
        self._all: List[RemoteCollection] = []
        for c in collections:
            self.add(c)

    def add(self, collection: RemoteCollection) -> None:
        self._all.append(collection)
        if collection.slug:
            self._by_slug.setdefault(collection.slug.lower(), collection)
        if collection.name:
            self._by_name.setdefault(collection.name.strip().lower(), collection)

    def by_slug(self, slug: Optional[str]) -> Optional[RemoteCollection]:
        return self._by_slug.get(slug.lower()) if slug else None

    def by_name(self, name: Optional[str]) -> Optional[RemoteCollection]:
        return self._by_name.get(name.strip().lower()) if name else None

    def find(self, slug: Optional[str], name: Optional[str] = None) -> Optional[RemoteCollection]:
        return self.by_slug(slug) or self.by_name(name)

    def __len__(self) -> int:
        return len(self._all)

    def __iter__(self):
        return iter(self._all)


class CollectionSyncReport(BaseModel):
    summary: CollectionSyncSummary = Field(default_factory=CollectionSyncSummary)
    outcomes: List[CollectionOutcome] = Field(default_factory=list)

    def collections(self) -> List[Dict[str, Any]]:
        return [
            {"slug": o.slug, "id": o.remote_id, "name": o.name}
            for o in self.outcomes
            if o.state in ("exists", "created")
        ]


def plan_collection_order(specs: Sequence[CollectionSpec], remote: CollectionIndex) -> Tuple[List[List[CollectionSpec]], List[CollectionSpec]]:
    """Layer specs so every parent precedes its children.

    Layer 0 holds roots and children of collections that only exist
    remotely. Anything whose parent is missing everywhere, or that sits on
    a parent cycle, is returned as unresolved.
    """
    in_batch = {s.slug.lower() for s in specs}
    layers: List[List[CollectionSpec]] = []
    unresolved: List[CollectionSpec] = []
    remaining: List[CollectionSpec] = []

    first: List[CollectionSpec] = []
    for s in specs:
        parent = (s.parent_slug or "").lower()
        if not parent:
            first.append(s)
        elif parent in in_batch and parent != s.slug.lower():
            remaining.append(s)
        elif parent not in in_batch and remote.by_slug(parent) is not None:
            first.append(s)
        else:
            unresolved.append(s)
    placed = {s.slug.lower() for s in first}
    if first:
        layers.append(first)

    while remaining:
        layer = [s for s in remaining if (s.parent_slug or "").lower() in placed]
        if not layer:
            break
        layers.append(layer)
        placed.update(s.slug.lower() for s in layer)
        remaining = [s for s in remaining if s.slug.lower() not in placed]
    unresolved.extend(remaining)
    return layers, unresolved


def order_for_deletion(collections: Sequence[RemoteCollection]) -> List[RemoteCollection]:
    # children first; sorted() is stable so source order holds within each group
    return sorted(collections, key=lambda c: 0 if c.parent_ref else 1)


async def delete_collections(client: SureCartClient, collections: Sequence[RemoteCollection], limiter: Optional[RateLimiter] = None) -> DeleteSummary:
    summary = DeleteSummary(total=len(collections))
    for c in order_for_deletion(collections):
        if limiter is not None:
            await limiter.acquire()
        try:
            logger.info("Deleting collection: %s (%s)", c.name, c.id)
            await client.delete_collection(c.id)
            summary.deleted += 1
        except CommerceApiError as e:
            logger.error("Failed to delete collection %s: %s", c.name or c.id, e)
            summary.failed += 1
    logger.info("Deleted %s collections, with %s errors.", summary.deleted, summary.failed)
    return summary


async def delete_all_collections(client: SureCartClient, limiter: Optional[RateLimiter] = None) -> DeleteSummary:
    existing = await client.list_all_collections()
    if not existing:
        logger.info("No existing collections found to delete.")
        return DeleteSummary()
    return await delete_collections(client, existing, limiter=limiter)


async def delete_collections_by_id(client: SureCartClient, ids: Sequence[str], limiter: Optional[RateLimiter] = None) -> DeleteSummary:
    targets = [RemoteCollection(id=i) for i in ids]
    return await delete_collections(client, targets, limiter=limiter)


def _update_metadata(spec: CollectionSpec, current: RemoteCollection, index: CollectionIndex, media: Optional[MediaResolution]) -> Dict[str, Any]:
    metadata: Dict[str, Any] = dict(current.metadata or {})
    if spec.parent_slug:
        parent = index.by_slug(spec.parent_slug)
        if parent is not None:
            metadata["parent_collection"] = parent.id
            metadata["parent_collection_slug"] = spec.parent_slug
        else:
            logger.warning("Parent collection not found: %s", spec.parent_slug)
    if spec.related_slugs:
        found: List[str] = []
        missed: List[str] = []
        for slug in spec.related_slugs:
            related = index.by_slug(slug)
            if related is not None:
                found.append(related.id)
            else:
                missed.append(slug)
                logger.warning("Related collection not found: %s", slug)
        metadata["related_collections"] = ",".join(spec.related_slugs)
        if found:
            metadata["related_collection_ids"] = ",".join(found)
        if missed:
            metadata["missed_related_collections"] = ",".join(missed)
    metadata.update(spec.metadata)
    if spec.images and media is not None:
        rec = media.get(spec.images[0])
        if rec is not None:
            metadata["wp_media"] = str(rec.id)
            metadata["wp_media_url"] = rec.source_url
    return metadata


def update_payload(spec: CollectionSpec, current: RemoteCollection, index: CollectionIndex, media: Optional[MediaResolution] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": spec.name,
        "description": spec.description,
        "short_description": spec.short_description,
        "metadata": _update_metadata(spec, current, index, media),
    }
    if spec.images:
        payload["images"] = spec.images
    return payload


async def _resolve_collection_media(wp: Optional[WordPressClient], specs: Sequence[CollectionSpec], folder_name: str) -> Optional[MediaResolution]:
    if wp is None:
        return None
    urls = collect_image_urls(s.images[0] for s in specs if s.images)
    if not urls:
        return None
    folder_id = await resolve_folder(wp, folder_name)
    return await resolve_media(wp, urls, folder_id)


async def _reconcile_one(
    client: SureCartClient,
    spec: CollectionSpec,
    index: CollectionIndex,
    synced: Dict[str, RemoteCollection],
    enriched: Dict[str, CollectionSpec],
    writer: Optional[DescriptionWriter],
    media: Optional[MediaResolution],
) -> CollectionOutcome:
    existing = index.find(spec.slug, spec.name)
    if existing is not None:
        logger.info("Collection already exists: %s - skipping creation", spec.slug)
        synced[spec.slug.lower()] = existing
        return CollectionOutcome(slug=spec.slug, name=spec.name, state="exists", remote_id=existing.id)

    parent_id: Optional[str] = None
    if spec.parent_slug:
        parent = synced.get(spec.parent_slug.lower()) or index.by_slug(spec.parent_slug)
        if parent is None:
            logger.error("Parent collection not found for %s: %s", spec.slug, spec.parent_slug)
            return CollectionOutcome(slug=spec.slug, name=spec.name, state="skipped", error=f"parent {spec.parent_slug} not found")
        parent_id = parent.id

    if writer is not None:
        spec = await writer.enrich_collection(spec)
        enriched[spec.slug.lower()] = spec
    try:
        created = await client.create_collection(collection_payload(spec, parent_id=parent_id, media=media))
    except CommerceApiError as e:
        logger.error("Failed to create collection %s: %s", spec.slug, e)
        return CollectionOutcome(slug=spec.slug, name=spec.name, state="failed", error=str(e))
    logger.info("Successfully created collection: %s (%s)", spec.name, spec.slug)
    synced[spec.slug.lower()] = created
    index.add(created)
    return CollectionOutcome(slug=spec.slug, name=spec.name, state="created", remote_id=created.id)


async def sync_collections(
    client: SureCartClient,
    rows: Sequence[SourceRow],
    *,
    writer: Optional[DescriptionWriter] = None,
    wp: Optional[WordPressClient] = None,
    media_folder: str = "SureCart",
    delete_existing: bool = False,
    skip_updates: bool = False,
    delete_limiter: Optional[RateLimiter] = None,
) -> CollectionSyncReport:
    require_columns(rows, REQUIRED_COLUMNS)
    report = CollectionSyncReport()
    summary = report.summary

    if delete_existing:
        logger.info("Deleting all existing collections first...")
        deleted = await delete_all_collections(client, limiter=delete_limiter)
        summary.deleted_collections = deleted.deleted
        summary.delete_errors = deleted.failed

    specs = build_collection_specs(rows)
    index = CollectionIndex(await client.list_all_collections())
    logger.info("Found %s existing collections", len(index))
    media = await _resolve_collection_media(wp, specs, media_folder)

    layers, unresolved = plan_collection_order(specs, index)
    for spec in unresolved:
        logger.error("Parent collection not found for %s: %s", spec.slug, spec.parent_slug)
        report.outcomes.append(CollectionOutcome(slug=spec.slug, name=spec.name, state="skipped", error=f"parent {spec.parent_slug} not found"))

    synced: Dict[str, RemoteCollection] = {}
    enriched: Dict[str, CollectionSpec] = {}
    for depth, layer in enumerate(layers):
        logger.info("Creating %s collections at depth %s", len(layer), depth)
        for spec in layer:
            report.outcomes.append(await _reconcile_one(client, spec, index, synced, enriched, writer, media))

    for o in report.outcomes:
        if o.state == "created":
            summary.created_collections += 1
        elif o.state == "exists":
            summary.existing_collections += 1
        elif o.state == "failed":
            summary.failed_collections += 1
        else:
            summary.skipped_collections += 1
    summary.total_collections = summary.created_collections + summary.existing_collections
    logger.info("Synced %s collections", summary.total_collections)

    if skip_updates:
        logger.info("Skipping collection updates as requested")
        return report

    latest = CollectionIndex(await client.list_all_collections())
    for spec in specs:
        current = latest.find(spec.slug, spec.name)
        if current is None:
            logger.warning("Collection not found for updates: %s", spec.slug)
            continue
        try:
            if spec.slug.lower() in enriched:
                spec = enriched[spec.slug.lower()]
            elif writer is not None:
                spec = await writer.enrich_collection(spec)
            await client.update_collection(current.id, update_payload(spec, current, latest, media))
            summary.updated_collections += 1
        except CommerceApiError as e:
            logger.error("Failed to update collection %s: %s", spec.slug, e)
            summary.update_errors += 1
    logger.info("Updated %s collections with %s errors", summary.updated_collections, summary.update_errors)
    return report


async def refresh_collection(client: SureCartClient, rows: Sequence[SourceRow], collection_id: str, writer: Optional[DescriptionWriter] = None) -> Dict[str, Any]:
    require_columns(rows, REQUIRED_COLUMNS)
    current = await client.get_collection(collection_id)
    if current is None:
        raise NotFoundError(f"Collection with ID {collection_id} not found")
    spec = next((s for s in build_collection_specs(rows) if s.slug.lower() == current.slug.lower()), None)
    if spec is None:
        raise NotFoundError(f"Collection {current.slug} not found in CSV data")
    if writer is not None:
        spec = await writer.enrich_collection(spec)
    index = CollectionIndex(await client.list_all_collections())
    payload = update_payload(spec, current, index)
    await client.update_collection(collection_id, payload)
    logger.info("Successfully updated collection %s (%s)", spec.name, spec.slug)
    return {"id": collection_id, "slug": spec.slug, "name": spec.name, "metadata": payload["metadata"]}
