from __future__ import annotations
import asyncio
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from .errors import MediaError, MediaFolderNotFoundError
from .models import MediaRecord, MediaResolution, filename_from_url
from .utils import get_logger
from .wp import WordPressClient, guess_mime

logger = get_logger("media")

PAGE_SIZE = 100


def collect_image_urls(*sources: Iterable[Optional[str]]) -> List[str]:
    urls: "OrderedDict[str, None]" = OrderedDict()
    for source in sources:
        for url in source:
            if url:
                urls.setdefault(url, None)
    return list(urls)


async def resolve_folder(wp: WordPressClient, name: str) -> Optional[int]:
    try:
        return await wp.find_media_folder(name)
    except MediaFolderNotFoundError as e:
        logger.error("%s", e)
        return None


async def load_media_index(wp: WordPressClient, folder_id: Optional[int], page_size: int = PAGE_SIZE) -> Dict[str, MediaRecord]:
    index: Dict[str, MediaRecord] = {}
    page = 1
    while True:
        items = await wp.list_media_page(folder_id, page, per_page=page_size)
        if not items:
            break
        for rec in items:
            index[rec.filename] = rec
        logger.info("Fetched %s media items from page %s", len(items), page)
        if len(items) < page_size:
            break
        page += 1
    return index


async def upload_image(wp: WordPressClient, url: str, folder_id: int) -> MediaRecord:
    if not await wp.probe_image(url):
        raise MediaError("Invalid image URL", url=url)
    filename = filename_from_url(url) or "image.jpg"
    data, content_type = await wp.download_image(url)
    logger.info("Uploading %s (%s bytes)", filename, len(data))
    record = await wp.upload_media(filename, data, guess_mime(filename, fallback=content_type))
    try:
        updated = await wp.update_media(record.id, folder_id=folder_id)
        if updated.get("source_url"):
            record = MediaRecord(id=record.id, source_url=updated["source_url"])
    except MediaError as e:
        logger.warning("Media %s uploaded without folder assignment: %s", record.id, e)
    return record


async def _upload_group(wp: WordPressClient, filename: str, url: str, folder_id: int) -> Tuple[str, Optional[MediaRecord], Optional[str]]:
    try:
        return filename, await upload_image(wp, url, folder_id), None
    except Exception as e:
        logger.error("Failed to upload image %s: %s", url, e)
        return filename, None, str(e) or type(e).__name__


async def resolve_media(wp: WordPressClient, urls: Sequence[str], folder_id: Optional[int], index: Optional[Dict[str, MediaRecord]] = None) -> MediaResolution:
    """Map every URL to a media record, uploading only unknown filenames.

    URLs sharing a filename resolve to the same record and cost at most
    one upload. A failed upload is recorded and the rest carry on.
    """
    distinct = collect_image_urls(urls)
    result = MediaResolution(total=len(distinct))
    if not distinct:
        return result
    if index is None:
        index = await load_media_index(wp, folder_id) if folder_id is not None else {}
    logger.info("Found %s existing media items", len(index))

    pending: "OrderedDict[str, List[str]]" = OrderedDict()
    for url in distinct:
        try:
            filename = filename_from_url(url)
        except ValueError as e:
            logger.error("Skipping malformed image URL %s: %s", url, e)
            result.errors[url] = f"malformed URL: {e}"
            result.failed += 1
            continue
        if filename in index:
            result.records[url] = index[filename]
            result.existing += 1
        else:
            pending.setdefault(filename, []).append(url)
    logger.info("%s images need upload, %s already exist", len(pending), result.existing)

    if folder_id is None:
        for filename, group in pending.items():
            for url in group:
                result.errors[url] = "media folder not found"
            result.failed += 1
        return result

    outcomes = await asyncio.gather(*(_upload_group(wp, fn, group[0], folder_id) for fn, group in pending.items()))
    for filename, record, error in outcomes:
        group = pending[filename]
        if record is not None:
            index[filename] = record
            for url in group:
                result.records[url] = record
            result.uploaded += 1
        else:
            for url in group:
                result.errors[url] = error or "upload failed"
            result.failed += 1
    logger.info("Completed %s/%s image uploads", result.uploaded, len(pending))
    return result


async def tag_variant_options(wp: WordPressClient, tags: Iterable[Tuple[int, str]]) -> int:
    unique = list(OrderedDict.fromkeys(tags))
    if not unique:
        return 0

    async def _tag(media_id: int, option: str) -> bool:
        try:
            await wp.update_media(media_id, meta={"sc_variant_option": option})
            return True
        except MediaError as e:
            logger.error("Failed to update variant metadata for media %s: %s", media_id, e)
            return False

    done = await asyncio.gather(*(_tag(mid, opt) for mid, opt in unique))
    return sum(1 for ok in done if ok)
