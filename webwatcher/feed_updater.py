# feed_updater.py
"""
Feed updater: downloads PhishTank and OpenPhish, normalizes and builds an index
for fast lookup by the reputation source in app/threat_intel.py.

Run:
    python -m webwatcher.feed_updater
"""

import json
import logging
import os
import time
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from .config import Settings

PHISHTANK_URL = "http://data.phishtank.com/data/online-valid.json"
OPENPHISH_URL = "https://openphish.com/feed.txt"
INDEX_NAME = "index.json"

logger = logging.getLogger("feed_updater")


def index_path(feed_dir: str) -> str:
    return os.path.join(feed_dir, INDEX_NAME)


def normalize_url(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url if "://" in url else "http://" + url)
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path.rstrip("/")
    query = f"?{parsed.query}" if parsed.query else ""
    return f"{scheme}://{netloc}{path}{query}"


def download_phishtank(timeout: float = 30) -> list:
    resp = requests.get(PHISHTANK_URL, timeout=timeout)
    resp.raise_for_status()
    payload = resp.json()
    if isinstance(payload, dict):
        payload = next((v for v in payload.values() if isinstance(v, list)), [])
    return payload


def download_openphish(timeout: float = 30) -> list:
    resp = requests.get(OPENPHISH_URL, timeout=timeout)
    resp.raise_for_status()
    return [line.strip() for line in resp.text.splitlines() if line.strip()]


def build_index(phishtank_entries: list, openphish_lines: list) -> Dict[str, dict]:
    """Normalized URL -> feed entry. PhishTank wins when both feeds list a URL."""
    index = {normalize_url(url): {"feed": "OpenPhish"} for url in openphish_lines}
    for entry in phishtank_entries:
        url = entry.get("url") or entry.get("phish_url")
        if url:
            index[normalize_url(url)] = {"feed": "PhishTank", "phish_id": entry.get("phish_id")}
    return index


def save_index(index: dict, feed_dir: str) -> None:
    os.makedirs(feed_dir, exist_ok=True)
    path = index_path(feed_dir)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"updated_at": int(time.time()), "index": index}, fh)
    logger.info("Wrote %d feed entries to %s", len(index), path)


def load_index(feed_dir: str) -> Dict[str, dict]:
    path = index_path(feed_dir)
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh).get("index", {})
    except (OSError, ValueError):
        logger.warning("Feed index at %s is unreadable", path)
        return {}


def lookup(index: Dict[str, dict], url: str) -> Optional[dict]:
    """Feed entry for the exact normalized URL, or None. Other URLs on the same host do not match."""
    return index.get(normalize_url(url))


def update(settings: Settings) -> int:
    """
    Refresh the index under ``settings.feed_dir`` and return its size. When
    neither feed could be fetched the existing index is left untouched.
    """
    feeds = {}
    for name, download in (("PhishTank", download_phishtank), ("OpenPhish", download_openphish)):
        try:
            feeds[name] = download()
        except (requests.RequestException, ValueError) as e:
            logger.error("%s download failed: %s", name, e)
            feeds[name] = []
        else:
            logger.info("%s: %d entries", name, len(feeds[name]))

    if not feeds["PhishTank"] and not feeds["OpenPhish"]:
        logger.warning("No feed data fetched, keeping the existing index")
        return len(load_index(settings.feed_dir))

    index = build_index(feeds["PhishTank"], feeds["OpenPhish"])
    save_index(index, settings.feed_dir)
    return len(index)


def main(settings: Optional[Settings] = None):
    update(settings or Settings.from_env())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
