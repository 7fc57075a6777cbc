# mf_data/services/amfi_sync.py
#
# Pulls AMFI's daily NAVAll.txt and upserts the latest NAV of every scheme
# into the local cache store.
#
#   python -m mf_data.services.amfi_sync [--file NAVAll.txt]

import argparse
import logging
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import requests

from mf_data.core.config import get_settings
from mf_data.core.logging import configure_logging
from mf_data.models.portfolio import NavPoint
from mf_data.services.cache_store import LocalCacheStore
from mf_data.utils.dates import try_parse_nav_date

logger = logging.getLogger(__name__)

DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_TIMEOUT_SECONDS = 30
RETRY_SLEEP_SECONDS = 2
HEADERS = {
    "User-Agent": "india-mf-data/1.0",
    "Accept": "*/*",
}


@dataclass(frozen=True)
class AmfiNavRecord:
    scheme_code: str
    isin_div: Optional[str]
    isin_growth: Optional[str]
    scheme_name: str
    nav: float
    nav_date: date


def _clean(value: str) -> Optional[str]:
    value = value.strip()
    return value if value and value != "-" else None


def parse_nav_all(lines: Iterable[str]) -> Iterator[AmfiNavRecord]:
    """
    Parse NAVAll.txt rows: ``code;isinDiv;isinGrowth;name;nav;date``.
    Header, section and blank lines are skipped, as are rows whose NAV
    is ``N.A.`` or whose date cannot be parsed.
    """
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or ";" not in line:
            continue

        parts = line.split(";")
        if len(parts) < 6:
            continue
        scheme_code, isin_div, isin_growth, scheme_name, nav_str, date_str = parts[:6]
        if not scheme_code.strip().isdigit():
            # column header row
            continue

        try:
            nav = float(nav_str.strip().replace(",", ""))
        except ValueError:
            continue
        nav_date = try_parse_nav_date(date_str)
        if nav_date is None or nav < 0:
            continue

        yield AmfiNavRecord(
            scheme_code=scheme_code.strip(),
            isin_div=_clean(isin_div),
            isin_growth=_clean(isin_growth),
            scheme_name=scheme_name.strip(),
            nav=nav,
            nav_date=nav_date,
        )


def download_nav_all(url: str, session: Optional[requests.Session] = None) -> str:
    """Download NAVAll.txt with retry logic."""
    http = session or requests.Session()
    last_error: Optional[Exception] = None
    for attempt in range(DOWNLOAD_ATTEMPTS):
        try:
            response = http.get(url, headers=HEADERS, timeout=DOWNLOAD_TIMEOUT_SECONDS)
            response.raise_for_status()
            logger.info(f"Downloaded NAVAll file from {url} ({len(response.text)} bytes)")
            return response.text
        except requests.RequestException as e:
            last_error = e
            logger.warning(f"Attempt {attempt + 1} failed to download NAVAll: {e}")
            if attempt < DOWNLOAD_ATTEMPTS - 1:
                time.sleep(RETRY_SLEEP_SECONDS)

    logger.error(f"Failed to download NAVAll file after {DOWNLOAD_ATTEMPTS} attempts.")
    raise last_error


def sync_nav_all(store: LocalCacheStore, lines: Iterable[str]) -> int:
    """Upsert every parsed record into the store. Returns the number of schemes written."""
    by_scheme: Dict[str, List[NavPoint]] = {}
    for record in parse_nav_all(lines):
        by_scheme.setdefault(record.scheme_code, []).append(NavPoint(date=record.nav_date, nav=record.nav))

    written = 0
    for i, (scheme_code, points) in enumerate(by_scheme.items(), start=1):
        if store.store_nav_history(scheme_code, points):
            written += 1
        if i % 1000 == 0:
            logger.info(f"--- Synced {i} schemes ---")

    logger.info(f"✅ AMFI sync complete: {written} schemes updated")
    return written


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Sync AMFI NAVAll.txt into the local NAV cache")
    parser.add_argument("--file", type=Path, help="Use a local NAVAll.txt instead of downloading it")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    store = LocalCacheStore.from_url(settings.CACHE_DATABASE_URL)
    if not store.available:
        logger.error("❌ No cache database configured; nothing to sync into")
        return 1

    try:
        if args.file:
            text = args.file.read_text(encoding="utf-8")
        else:
            text = download_nav_all(settings.AMFI_NAV_ALL_URL)
    except (OSError, requests.RequestException) as e:
        logger.error(f"❌ AMFI sync failed: {e}")
        return 1

    sync_nav_all(store, text.splitlines())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
