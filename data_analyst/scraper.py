# scraper.py

import asyncio
import io
import logging
from typing import List

import httpx
import pandas as pd
from bs4 import BeautifulSoup

from . import config
from .results import ScrapedResult, TabularResult

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": config.USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def text_from_html(soup: BeautifulSoup) -> str:
    for s in soup(["script", "style", "noscript"]):
        s.extract()
    return soup.get_text(" ", strip=True)


def _column_name(col) -> str:
    if isinstance(col, tuple):
        parts = [str(p) for p in col if str(p) and not str(p).startswith("Unnamed")]
        # de-duplicate repeated header levels ("Gross", "Gross")
        return " ".join(dict.fromkeys(parts)) or str(col[-1])
    return str(col)


def frame_to_table(df: pd.DataFrame, caption: str | None = None) -> TabularResult:
    headers = [_column_name(c) for c in df.columns]
    rows = [["" if pd.isna(v) else str(v) for v in row] for row in df.itertuples(index=False, name=None)]
    return TabularResult.of(headers, rows, caption)


def tables_from_html(soup: BeautifulSoup) -> List[TabularResult]:
    tables: List[TabularResult] = []
    for t in soup.find_all("table"):
        caption = t.caption.get_text(" ", strip=True) if t.caption else None
        try:
            frames = pd.read_html(io.StringIO(str(t)))
        except ValueError:
            # no parseable rows in this <table>
            continue
        for df in frames:
            tables.append(frame_to_table(df, caption))
    return tables


class Scraper:
    def __init__(self, client: httpx.AsyncClient, timeout_s: float = config.HTTP_TIMEOUT_S):
        self.client = client
        self.timeout_s = timeout_s

    async def fetch(self, url: str) -> ScrapedResult:
        """Fetch a page and pull out its text and tables. Never raises.

        Parsing runs in a worker thread so large pages leave the event loop free.
        """
        logger.info(f"Scraping data from: {url}")
        try:
            r = await self.client.get(url, headers=BROWSER_HEADERS, timeout=self.timeout_s, follow_redirects=True)
            r.raise_for_status()
            ctype = (r.headers.get("Content-Type") or "").lower()
            if "html" not in ctype and "xml" not in ctype:
                logger.warning(f"Non-HTML content at {url} ({ctype or 'unknown type'})")
                return ScrapedResult(url=url)
            return await asyncio.to_thread(self.parse, r.text, url)
        except Exception as e:
            logger.warning(f"Error scraping {url}: {type(e).__name__}: {e}")
            return ScrapedResult(url=url)

    @staticmethod
    def parse(html: str, url: str = "") -> ScrapedResult:
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        tables = tables_from_html(soup)
        text = text_from_html(soup)
        logger.info(f"Scraped {url or 'document'}: {len(tables)} tables, {len(text)} chars")
        return ScrapedResult(url=url, title=title, text=text, tables=tuple(tables))
