from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from .config import Settings, get_settings
from .errors import ConfigError, MediaError, MediaFolderNotFoundError
from .models import MediaRecord
from .utils import get_logger

logger = get_logger("wp")

USER_AGENT = "storesync/1.0"
MIME_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


def guess_mime(filename: str, fallback: str = "image/jpeg") -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return MIME_BY_EXTENSION.get(ext, fallback)


class WordPressClient:
    def __init__(
        self,
        base_url: str,
        user: str,
        app_password: str,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/wp-json/wp/v2/",
            auth=httpx.BasicAuth(user, app_password),
            timeout=timeout,
            transport=transport,
        )
        # remote image hosts, no credentials
        self._external = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, s: Settings | None = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WordPressClient":
        s = s or get_settings()
        if not s.media_enabled:
            raise ConfigError("WP_URL, WP_USERNAME and WP_APP_PASSWORD are required for media")
        return cls(base_url=s.wp_url, user=s.wp_user or "", app_password=s.wp_app_password or "", timeout=s.requests_timeout, transport=transport)

    async def __aenter__(self) -> "WordPressClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._external.aclose()

    async def _request(self, method: str, endpoint: str, *, json: Optional[dict] = None, params: Optional[dict] = None,
                       content: Optional[bytes] = None, headers: Optional[dict] = None) -> Any:
        try:
            resp = await self._client.request(method, endpoint.lstrip("/"), json=json, params=params, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise MediaError(f"{method} {endpoint} failed: {e}", url=endpoint) from e
        if resp.status_code >= 400:
            logger.error("HTTP %s %s -> %s %s", method, endpoint, resp.status_code, resp.text[:200])
            raise MediaError(f"{method} {endpoint} -> {resp.status_code}", url=endpoint)
        return resp.json() if resp.content else {}

    async def find_media_folder(self, name: str) -> int:
        try:
            terms = await self._request("GET", "happyfiles_category", params={"search": name})
        except MediaError as e:
            raise MediaFolderNotFoundError(f"Could not look up media folder {name!r}: {e}") from e
        if not isinstance(terms, list) or not terms:
            raise MediaFolderNotFoundError(f"Media folder {name!r} not found. Create it in WordPress before syncing.")
        folder_id = int(terms[0]["id"])
        logger.info("Using media folder %s with ID %s", name, folder_id)
        return folder_id

    async def list_media_page(self, folder_id: Optional[int], page: int, per_page: int = 100) -> Optional[List[MediaRecord]]:
        """One page of the media library; ``None`` once the listing is exhausted."""
        params: Dict[str, Any] = {"per_page": per_page, "page": page}
        if folder_id is not None:
            params["happyfiles_category"] = folder_id
        try:
            resp = await self._client.get("media", params=params)
        except httpx.HTTPError as e:
            logger.error("Error fetching media page %s: %s", page, e)
            return None
        if resp.status_code >= 400:
            if not (400 <= resp.status_code < 500):
                logger.error("Error fetching media page %s: %s", page, resp.status_code)
            return None
        try:
            items = resp.json()
        except ValueError as e:
            logger.error("Media page %s is not JSON: %s", page, e)
            return None
        if not isinstance(items, list):
            return None
        return [MediaRecord(id=int(i["id"]), source_url=i["source_url"]) for i in items if i.get("source_url")]

    async def probe_image(self, url: str) -> bool:
        if not url.startswith(("http://", "https://")):
            logger.warning("Invalid URL protocol: %s", url)
            return False
        try:
            resp = await self._external.head(url)
        except httpx.HTTPError as e:
            logger.error("Error validating image URL %s: %s", url, e)
            return False
        if not resp.is_success:
            logger.warning("URL returned non-OK status: %s - %s", resp.status_code, url)
            return False
        ctype = resp.headers.get("content-type", "")
        if not ctype.startswith("image/"):
            logger.warning("URL does not point to an image: %s - %s", ctype or "no content-type", url)
            return False
        return True

    @retry(retry=retry_if_exception_type(MediaError), stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=4), reraise=True)
    async def download_image(self, url: str) -> Tuple[bytes, str]:
        try:
            resp = await self._external.get(url)
        except httpx.HTTPError as e:
            raise MediaError(f"Failed to fetch image: {e}", url=url) from e
        if not resp.is_success:
            raise MediaError(f"Failed to fetch image: {resp.status_code} {resp.reason_phrase}", url=url)
        return resp.content, resp.headers.get("content-type", "image/jpeg")

    async def upload_media(self, filename: str, data: bytes, mime: str) -> MediaRecord:
        headers = {"Content-Disposition": f'attachment; filename="{filename}"', "Content-Type": mime}
        res = await self._request("POST", "media", content=data, headers=headers)
        return MediaRecord(id=int(res["id"]), source_url=res.get("source_url", ""))

    @retry(retry=retry_if_exception_type(MediaError), stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=4), reraise=True)
    async def update_media(self, media_id: int, folder_id: Optional[int] = None, meta: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if folder_id is not None:
            payload["happyfiles_category"] = [folder_id]
        if meta:
            payload["meta"] = meta
        return await self._request("POST", f"media/{media_id}", json=payload)
