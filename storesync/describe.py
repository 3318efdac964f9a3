from __future__ import annotations
from typing import Any, Dict, Optional
from openai import AsyncOpenAI, OpenAIError
from .config import Settings
from .models import CollectionSpec, ProductGroup
from .utils import get_logger

logger = get_logger("describe")

SHORT_DESCRIPTION_LIMIT = 160
STORE_NAME = "Seven Peaks Gear"


def _metadata_lines(metadata: Dict[str, Any]) -> str:
    if not metadata:
        return ""
    lines = ["Additional Details:"]
    for key, value in metadata.items():
        if value:
            lines.append(f"- {key.replace('_', ' ')}: {value}")
    return "\n".join(lines)


class DescriptionWriter:
    """Fills in missing copy with an LLM, falling back to fixed templates."""

    def __init__(self, client: Optional[Any] = None, model: str = "gpt-4o-mini", enabled: bool = True) -> None:
        self.client = client
        self.model = model
        self.enabled = enabled

    @classmethod
    def from_settings(cls, s: Settings) -> "DescriptionWriter":
        client = AsyncOpenAI(api_key=s.openai_api_key, timeout=s.requests_timeout) if s.openai_api_key else None
        return cls(client=client, model=s.openai_model, enabled=s.enrich_descriptions)

    async def _complete(self, system: str, prompt: str, max_tokens: int) -> str:
        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=0.7,
        )
        content = resp.choices[0].message.content if resp.choices else None
        return (content or "").strip()

    async def collection_short_description(self, spec: CollectionSpec) -> str:
        fallback = f"{spec.name} - Shop our exclusive selection featuring premium quality and performance."[:SHORT_DESCRIPTION_LIMIT]
        if not spec.description.strip():
            return ""
        if self.client is None:
            return fallback
        prompt = (
            "You are generating a short, SEO-friendly description for a product collection.\n\n"
            f"Collection Name: {spec.name}\n\n"
            f"Main Description: {spec.description}\n\n"
            f"{_metadata_lines(spec.metadata)}\n\n"
            f"Create a concise, compelling short description (maximum {SHORT_DESCRIPTION_LIMIT} characters) "
            "that captures the essence of this collection.\n\nShort Description:"
        )
        try:
            text = await self._complete(
                "You are a skilled e-commerce copywriter specializing in SEO-friendly product descriptions.", prompt, 100
            )
        except OpenAIError as e:
            logger.error("Error generating short description for %s: %s", spec.slug, e)
            return f"{spec.name} - Shop our exclusive selection."[:SHORT_DESCRIPTION_LIMIT]
        return (text or fallback)[:SHORT_DESCRIPTION_LIMIT]

    async def product_description(self, group: ProductGroup) -> str:
        fallback = f"{group.display_name} - {group.category_name} - Premium bicycle accessory from {STORE_NAME}."
        if self.client is None:
            return fallback
        prompt = (
            f"Craft a 2-to-3-sentence product description for a {STORE_NAME} product.\n\n"
            f"- Product Title: {group.display_name}\n"
            f"- Category: {group.category_name}\n"
            f"- Key Specs / Benefits: {_metadata_lines(group.metadata)}\n\n"
            "Lead with the standout advantage, weave in two or three features from the specs, "
            "keep a professional yet energetic tone, and output only the description text."
        )
        try:
            text = await self._complete(
                "You are a professional product description writer for a bicycle accessories company.", prompt, 150
            )
        except OpenAIError as e:
            logger.error("Error generating product description for %s: %s", group.slug, e)
            return fallback
        return text or fallback

    async def enrich_collection(self, spec: CollectionSpec) -> CollectionSpec:
        if not self.enabled or spec.short_description or not spec.description:
            return spec
        logger.info("No short description provided for %s, generating one...", spec.name)
        short = await self.collection_short_description(spec)
        return spec.model_copy(update={"short_description": short}) if short else spec

    async def enrich_product(self, group: ProductGroup) -> ProductGroup:
        if not self.enabled or group.description:
            return group
        return group.model_copy(update={"description": await self.product_description(group)})
