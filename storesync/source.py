from __future__ import annotations
import csv
import io
from typing import Iterable, List, Optional
import httpx
from .errors import FetchError, MissingColumnsError, SourceParseError
from .models import SourceRow
from .utils import get_logger

logger = get_logger("source")


async def fetch_csv_text(url: str, client: Optional[httpx.AsyncClient] = None, timeout: int = 30) -> str:
    if not url:
        raise FetchError("No source URL configured", url=url)
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch CSV: {e}", url=url) from e
    finally:
        if own_client:
            await client.aclose()
    if not resp.is_success:
        raise FetchError(f"Failed to fetch CSV: {resp.status_code} {resp.reason_phrase}", url=url, status=resp.status_code)
    return resp.text


def parse_csv(text: str) -> List[SourceRow]:
    """Parse CSV text into rows keyed by the trimmed header row.

    Blank lines are skipped and every cell is trimmed. When a header name
    repeats, the first column carrying it wins.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    header: Optional[List[str]] = None
    rows: List[SourceRow] = []
    try:
        for raw in reader:
            cells = [c.strip() for c in raw]
            if not any(cells):
                continue
            if header is None:
                header = cells
                continue
            row: SourceRow = {}
            for idx, name in enumerate(header):
                if name in row:
                    continue
                row[name] = cells[idx] if idx < len(cells) else ""
            rows.append(row)
    except csv.Error as e:
        raise SourceParseError(f"Failed to parse CSV: {e}") from e
    return rows


def require_columns(rows: List[SourceRow], columns: Iterable[str]) -> None:
    if not rows:
        return
    present = set(rows[0].keys())
    missing = [c for c in columns if c not in present]
    if missing:
        raise MissingColumnsError(missing)


async def fetch_rows(url: str, client: Optional[httpx.AsyncClient] = None, timeout: int = 30) -> List[SourceRow]:
    text = await fetch_csv_text(url, client=client, timeout=timeout)
    rows = parse_csv(text)
    logger.info("Fetched %s rows from %s", len(rows), url)
    return rows
