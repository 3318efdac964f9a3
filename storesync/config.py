from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    surecart_api_url: str
    surecart_api_key: Optional[str]
    wp_url: str
    wp_user: Optional[str]
    wp_app_password: Optional[str]
    products_file_url: str = ""
    collections_file_url: str = ""
    product_key_column: str = "Handle"
    product_slug_mode: str = "key"
    media_folder_name: str = "SureCart"
    requests_timeout: int = 30
    rate_limit_rps: float = 10.0
    delete_batch_size: int = 20
    delete_batch_interval: float = 3.0
    collection_delete_interval: float = 0.2
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    enrich_descriptions: bool = False

    @property
    def media_enabled(self) -> bool:
        return bool(self.wp_url and self.wp_user and self.wp_app_password)


def str_to_bool(val: Optional[str], default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y"}


def get_settings() -> Settings:
    return Settings(
        surecart_api_url=os.getenv("SURECART_API_URL", "https://api.surecart.com").rstrip("/"),
        surecart_api_key=os.getenv("SURECART_API_KEY"),
        wp_url=os.getenv("WP_URL", "").rstrip("/"),
        wp_user=os.getenv("WP_USERNAME"),
        wp_app_password=os.getenv("WP_APP_PASSWORD"),
        products_file_url=os.getenv("PRODUCTS_FILE_URL", ""),
        collections_file_url=os.getenv("COLLECTIONS_FILE_URL", ""),
        product_key_column=os.getenv("PRODUCT_KEY_COLUMN", "Handle"),
        product_slug_mode=os.getenv("PRODUCT_SLUG_MODE", "key").strip().lower(),
        media_folder_name=os.getenv("MEDIA_FOLDER_NAME", "SureCart"),
        requests_timeout=int(os.getenv("REQUESTS_TIMEOUT", "30")),
        rate_limit_rps=float(os.getenv("RATE_LIMIT_RPS", "10")),
        delete_batch_size=int(os.getenv("DELETE_BATCH_SIZE", "20")),
        delete_batch_interval=float(os.getenv("DELETE_BATCH_INTERVAL", "3")),
        collection_delete_interval=float(os.getenv("COLLECTION_DELETE_INTERVAL", "0.2")),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        enrich_descriptions=str_to_bool(os.getenv("ENRICH_DESCRIPTIONS"), False),
    )
