from __future__ import annotations
import re
from collections import OrderedDict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence
from .errors import MissingColumnsError
from .models import (
    CollectionSpec,
    MediaRecord,
    MediaResolution,
    ProductGroup,
    ProductWrite,
    SimpleProduct,
    SourceRow,
    VariantOption,
    VariantProduct,
    VariantSpec,
)
from .utils import get_logger

logger = get_logger("transform")

METADATA_PREFIXES = ("Metadata:", "Metafield:")
KEY_COLUMNS = ("Handle", "Slug")
OPTION_POSITIONS = (1, 2, 3)
FALLBACK_PRICE_NAME = "Fallback Pricing"


def _first(row: SourceRow, *columns: str) -> str:
    for c in columns:
        val = row.get(c)
        if val:
            return val
    return ""


# stripped before the leading number is read
PRICE_NOISE = re.compile(r"[\s,$\u00a3\u00a5\u20ac]")
LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def parse_price_cents(text: Optional[str]) -> int:
    if not text:
        return 0
    m = LEADING_NUMBER.match(PRICE_NOISE.sub("", text))
    if not m:
        return 0
    try:
        value = Decimal(m.group(0))
    except InvalidOperation:
        return 0
    if not value.is_finite() or value <= 0:
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_int(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    try:
        return int(Decimal(text.replace(",", "").strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def parse_weight(text: Optional[str]) -> float:
    if not text:
        return 0.0
    m = re.search(r"-?\d+(?:\.\d+)?", text)
    return float(m.group(0)) if m else 0.0


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


def format_slug(name: str, category: str) -> str:
    parts = [p for p in (slugify(name), slugify(category)) if p]
    return "-".join(parts)


def metadata_key(header: str) -> Optional[str]:
    for prefix in METADATA_PREFIXES:
        if header.startswith(prefix):
            key = header[len(prefix):].strip().lower()
            return re.sub(r"\s+", "_", key) or None
    return None


def extract_metadata(row: SourceRow, exclude: Iterable[str] = ()) -> Dict[str, str]:
    skip = set(exclude)
    meta: Dict[str, str] = {}
    for header, value in row.items():
        key = metadata_key(header)
        if key and key not in skip and value:
            meta[key] = value
    return meta


def split_images(cell: Optional[str]) -> List[str]:
    if not cell:
        return []
    return [u.strip() for u in cell.split(",") if u.strip()]


def resolve_key_column(rows: Sequence[SourceRow], preferred: str = "Handle") -> str:
    if not rows:
        return preferred
    headers = rows[0].keys()
    if preferred in headers:
        return preferred
    for c in KEY_COLUMNS:
        if c in headers:
            return c
    raise MissingColumnsError([preferred])


def group_rows(rows: Sequence[SourceRow], key_column: str) -> "OrderedDict[str, List[SourceRow]]":
    groups: "OrderedDict[str, List[SourceRow]]" = OrderedDict()
    for idx, row in enumerate(rows, start=1):
        key = (row.get(key_column) or "").strip()
        if not key:
            logger.warning("Row %s has no %s, skipping", idx, key_column)
            continue
        groups.setdefault(key, []).append(row)
    return groups


def _variant_options(rows: Sequence[SourceRow]) -> List[VariantOption]:
    options: List[VariantOption] = []
    for pos in OPTION_POSITIONS:
        name = next((r.get(f"Option{pos} Name") for r in rows if r.get(f"Option{pos} Name")), None)
        if name:
            options.append(VariantOption(name=name, position=pos))
    return options


def _variant_from_row(row: SourceRow, index: int) -> VariantSpec:
    images = split_images(row.get("Images"))
    position = parse_int(row.get("Order")) or index + 1
    variant = VariantSpec(
        price_cents=parse_price_cents(_first(row, "Variant Price", "Price")),
        position=position,
        sku=_first(row, "ID", "SKU", "Variant SKU"),
        image_url=images[0] if images else None,
        stock_quantity=parse_int(_first(row, "Stock", "Variant Inventory Qty")),
    )
    for pos in OPTION_POSITIONS:
        val = row.get(f"Option{pos} Value")
        if val:
            setattr(variant, f"option_{pos}", val)
    if len(images) > 1:
        variant.metadata["additional_images"] = ",".join(images[1:])
    return variant


def build_product_group(key: str, rows: Sequence[SourceRow], slug_mode: str = "key") -> ProductGroup:
    first = rows[0]
    title = _first(first, "Title", "Name") or key
    category = first.get("Category - Name", "")
    metadata: Dict[str, str] = {}
    for row in rows:
        for k, v in extract_metadata(row).items():
            metadata.setdefault(k, v)
    slug = format_slug(title, category) if slug_mode == "composite" else key
    variants = [_variant_from_row(r, i) for i, r in enumerate(rows)]
    additional: List[str] = []
    for r in rows:
        for url in split_images(r.get("Images"))[1:]:
            if url not in additional:
                additional.append(url)
    return ProductGroup(
        key=key,
        slug=slug,
        display_name=title,
        category_name=category,
        category_slug=first.get("Category - Slug") or slugify(category),
        description=first.get("Description", ""),
        weight=parse_weight(first.get("Weight")),
        metadata=metadata,
        variant_options=_variant_options(rows),
        variants=variants,
        additional_images=additional,
    )


def build_product_groups(rows: Sequence[SourceRow], key_column: str = "Handle", slug_mode: str = "key") -> List[ProductGroup]:
    column = resolve_key_column(rows, key_column)
    groups = group_rows(rows, column)
    result = [build_product_group(k, g, slug_mode=slug_mode) for k, g in groups.items()]
    seen: Dict[str, str] = {}
    for g in result:
        if g.slug in seen:
            logger.warning("Slug %s is shared by groups %s and %s", g.slug, seen[g.slug], g.key)
        seen.setdefault(g.slug, g.key)
    return result


def validate_group(group: ProductGroup) -> List[str]:
    issues: List[str] = []
    if not group.display_name:
        issues.append(f"{group.key}: missing title")
    if not group.slug:
        issues.append(f"{group.key}: empty slug")
    if representative_price(group.variants) is None:
        issues.append(f"{group.key}: no variant has a positive price")
    if not group.is_simple:
        for v in group.variants:
            if not any(getattr(v, f"option_{o.position}") for o in group.variant_options):
                issues.append(f"{group.key}: variant at position {v.position} has no option values")
    return issues


def representative_price(variants: Sequence[VariantSpec]) -> Optional[int]:
    prices = [v.price_cents for v in variants if v.price_cents > 0]
    return min(prices) if prices else None


def gallery_ids(group: ProductGroup, media: Optional[MediaResolution]) -> List[int]:
    ids: List[int] = []
    if media is None:
        return ids
    for v in group.variants:
        rec = media.get(v.image_url)
        if rec and rec.id not in ids:
            ids.append(rec.id)
    return ids


def to_product_write(group: ProductGroup) -> ProductWrite:
    if not group.is_simple:
        return VariantProduct(group=group)
    first = group.variants[0] if group.variants else VariantSpec()
    return SimpleProduct(
        group=group,
        price_cents=representative_price(group.variants) or 0,
        sku=first.sku,
        stock_quantity=first.stock_quantity,
    )


def _media_metadata(rec: Optional[MediaRecord]) -> Dict[str, str]:
    if rec is None:
        return {}
    return {"wp_media": str(rec.id), "wp_media_url": rec.source_url}


def _base_product_payload(group: ProductGroup, media: Optional[MediaResolution], collection_id: Optional[str]) -> Dict[str, Any]:
    title, category = group.display_name, group.category_name
    metadata = dict(group.metadata)
    gallery = gallery_ids(group, media)
    if gallery:
        metadata["gallery_ids"] = "[" + ",".join(str(i) for i in gallery) + "]"
    if group.additional_images:
        metadata["additional_images"] = ",".join(group.additional_images)
    payload: Dict[str, Any] = {
        "name": title,
        "slug": group.slug,
        "status": "published",
        "recurring": False,
        "featured": False,
        "content": f"{category} - {title}" if category else title,
        "description": group.description or f"{title} {category}".strip(),
        "tax_category": "tangible",
        "tax_enabled": True,
        "shipping_enabled": True,
        "weight": group.weight,
        "weight_unit": "lb",
        "metadata": metadata,
    }
    if collection_id:
        payload["product_collections"] = [collection_id]
    return payload


def _variant_payload(v: VariantSpec, media: Optional[MediaResolution]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"amount": v.price_cents, "position": v.position, "sku": v.sku}
    for pos in OPTION_POSITIONS:
        val = getattr(v, f"option_{pos}")
        if val:
            out[f"option_{pos}"] = val
    if v.stock_quantity is not None:
        out["stock_adjustment"] = v.stock_quantity
    meta = dict(v.metadata)
    meta.update(_media_metadata(media.get(v.image_url) if media else None))
    if meta:
        out["metadata"] = meta
    return out


def product_payload(write: ProductWrite, media: Optional[MediaResolution] = None, collection_id: Optional[str] = None) -> Dict[str, Any]:
    payload = _base_product_payload(write.group, media, collection_id)
    if isinstance(write, VariantProduct):
        payload["variant_options"] = [o.model_dump() for o in write.group.variant_options]
        payload["variants"] = [_variant_payload(v, media) for v in write.group.variants]
    elif isinstance(write, SimpleProduct):
        if write.sku:
            payload["sku"] = write.sku
        payload["stock_enabled"] = write.stock_quantity is not None
        if write.stock_quantity is not None:
            payload["stock_adjustment"] = write.stock_quantity
        first_image = write.group.variants[0].image_url if write.group.variants else None
        payload["metadata"].update(_media_metadata(media.get(first_image) if media else None))
    else:
        raise TypeError(f"Unknown product shape: {type(write).__name__}")
    return payload


def price_payload(product_id: str, amount: int, name: str = FALLBACK_PRICE_NAME) -> Dict[str, Any]:
    return {"ad_hoc": False, "amount": amount, "name": name, "product": product_id}


# Collections

def build_collection_spec(row: SourceRow) -> CollectionSpec:
    return CollectionSpec(
        name=row.get("Name", ""),
        slug=row.get("Slug", ""),
        description=row.get("Description", ""),
        short_description=row.get("Short Description", ""),
        parent_slug=row.get("Metadata: Parent") or None,
        images=split_images(row.get("Images")),
        related_slugs=split_images(row.get("Metadata: Related Collections")),
        metadata=extract_metadata(row, exclude=("parent", "related_collections")),
    )


def build_collection_specs(rows: Sequence[SourceRow]) -> List[CollectionSpec]:
    specs: List[CollectionSpec] = []
    seen: set[str] = set()
    for idx, row in enumerate(rows, start=1):
        if not row.get("Slug") or not row.get("Name"):
            logger.warning("Skipping collection row %s without Slug or Name (%s)", idx, row.get("Slug") or "unknown")
            continue
        spec = build_collection_spec(row)
        if spec.slug.lower() in seen:
            logger.warning("Duplicate collection slug %s at row %s, keeping the first", spec.slug, idx)
            continue
        seen.add(spec.slug.lower())
        specs.append(spec)
    return specs


def collection_payload(spec: CollectionSpec, parent_id: Optional[str] = None, media: Optional[MediaResolution] = None) -> Dict[str, Any]:
    metadata: Dict[str, str] = dict(spec.metadata)
    if spec.parent_slug and parent_id:
        metadata["parent_collection"] = parent_id
        metadata["parent_collection_slug"] = spec.parent_slug
    if spec.images and media is not None:
        metadata.update(_media_metadata(media.get(spec.images[0])))
    payload: Dict[str, Any] = {
        "name": spec.name,
        "slug": spec.slug,
        "description": spec.description,
        "short_description": spec.short_description,
    }
    if spec.images:
        payload["images"] = spec.images
    if metadata:
        payload["metadata"] = metadata
    return payload
