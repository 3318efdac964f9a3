from __future__ import annotations
from typing import Annotated, Any, Dict, List, Optional, Literal, Union
from urllib.parse import urlsplit
from pydantic import BaseModel, ConfigDict, Field

SourceRow = Dict[str, str]


def filename_from_url(url: str) -> str:
    # last path segment, query string and fragment ignored
    path = urlsplit(url).path
    return path.rstrip("/").rsplit("/", 1)[-1]


class VariantSpec(BaseModel):
    price_cents: int = Field(default=0, ge=0)
    position: int = 1
    sku: str = ""
    option_1: Optional[str] = None
    option_2: Optional[str] = None
    option_3: Optional[str] = None
    image_url: Optional[str] = None
    stock_quantity: Optional[int] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class VariantOption(BaseModel):
    name: str
    position: int


class ProductGroup(BaseModel):
    key: str
    slug: str
    display_name: str
    category_name: str = ""
    category_slug: str = ""
    description: str = ""
    weight: float = 0.0
    metadata: Dict[str, str] = Field(default_factory=dict)
    variant_options: List[VariantOption] = Field(default_factory=list)
    variants: List[VariantSpec] = Field(default_factory=list)
    additional_images: List[str] = Field(default_factory=list)

    @property
    def is_simple(self) -> bool:
        return not self.variant_options

    def image_urls(self) -> List[str]:
        seen: List[str] = []
        for v in self.variants:
            if v.image_url and v.image_url not in seen:
                seen.append(v.image_url)
        return seen


class CollectionSpec(BaseModel):
    name: str
    slug: str
    description: str = ""
    short_description: str = ""
    parent_slug: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    related_slugs: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)


class MediaRecord(BaseModel):
    id: int
    source_url: str

    @property
    def filename(self) -> str:
        return filename_from_url(self.source_url)


class RemoteProduct(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    slug: str = ""


class RemoteCollection(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    slug: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def parent_ref(self) -> Optional[str]:
        meta = self.metadata or {}
        return meta.get("parent_collection") or meta.get("parent_collection_id") or None


# Product write shapes

class SimpleProduct(BaseModel):
    kind: Literal["simple"] = "simple"
    group: ProductGroup
    price_cents: int = 0
    sku: str = ""
    stock_quantity: Optional[int] = None
    media: Optional[MediaRecord] = None


class VariantProduct(BaseModel):
    kind: Literal["variant"] = "variant"
    group: ProductGroup


ProductWrite = Annotated[Union[SimpleProduct, VariantProduct], Field(discriminator="kind")]


# Run results

class MediaResolution(BaseModel):
    records: Dict[str, MediaRecord] = Field(default_factory=dict)
    total: int = 0
    existing: int = 0
    uploaded: int = 0
    failed: int = 0
    errors: Dict[str, str] = Field(default_factory=dict)

    def get(self, url: Optional[str]) -> Optional[MediaRecord]:
        if not url:
            return None
        return self.records.get(url)


class ProductResult(BaseModel):
    name: str
    slug: str
    success: bool
    product_id: Optional[str] = None
    price_id: Optional[str] = None
    collection_id: Optional[str] = None
    error: Optional[str] = None


class ProductSyncSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_products: int = Field(0, alias="totalProducts")
    successful_products: int = Field(0, alias="successfulProducts")
    total_images: int = Field(0, alias="totalImages")
    uploaded_images: int = Field(0, alias="uploadedImages")
    existing_images: int = Field(0, alias="existingImages")
    failed_images: int = Field(0, alias="failedImages")


class DeleteSummary(BaseModel):
    total: int = 0
    deleted: int = 0
    failed: int = 0


class CollectionOutcome(BaseModel):
    slug: str
    name: str
    state: Literal["exists", "created", "failed", "skipped"]
    remote_id: Optional[str] = None
    error: Optional[str] = None


class CollectionSyncSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_collections: int = Field(0, alias="totalCollections")
    created_collections: int = Field(0, alias="createdCollections")
    existing_collections: int = Field(0, alias="existingCollections")
    failed_collections: int = Field(0, alias="failedCollections")
    skipped_collections: int = Field(0, alias="skippedCollections")
    deleted_collections: int = Field(0, alias="deletedCollections")
    delete_errors: int = Field(0, alias="deleteErrors")
    updated_collections: int = Field(0, alias="updatedCollections")
    update_errors: int = Field(0, alias="updateErrors")
