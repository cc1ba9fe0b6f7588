# catalog_ingest/storage/image_cache.py

"""Local disk cache for remote listing images."""

import hashlib
import logging
from pathlib import Path
from urllib.parse import urlsplit

from curl_cffi import requests as curl_requests

from catalog_ingest.config.settings import Settings

logger = logging.getLogger("catalog_ingest.images")

_MIN_IMAGE_BYTES = 1024
_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".avif")


class LocalImageCache:
    """Downloads images once and serves them from ``IMAGE_CACHE_DIR``.

    Files are named by the SHA-1 of the source URL.  Responses smaller
    than 1 KB are treated as placeholders and rejected.
    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        self.cache_dir: Path = cache_dir or Settings.IMAGE_CACHE_DIR
        self.session = curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )

    def path_for(self, url: str) -> Path:
        """Cache file path for a source URL."""
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()
        suffix = Path(urlsplit(url).path).suffix.lower()
        if suffix not in _EXTENSIONS:
            suffix = ".jpg"
        return self.cache_dir / f"{digest}{suffix}"

    def cache_external_image(self, url: str) -> str | None:
        """Return the local path for ``url``, downloading it if needed."""
        if not url:
            return None
        if url.startswith("//"):
            url = f"https:{url}"
        if not url.startswith(("http://", "https://")):
            return None

        target = self.path_for(url)
        if target.exists() and target.stat().st_size >= _MIN_IMAGE_BYTES:
            return str(target)

        try:
            resp = self.session.get(
                url,
                headers={"Accept": "image/avif,image/webp,image/*,*/*;q=0.8"},
                timeout=Settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            logger.warning("Image download failed for %s: %s", url, exc)
            return None
        if resp.status_code != 200:
            logger.debug("Image HTTP %d for %s", resp.status_code, url)
            return None
        content = resp.content
        if len(content) < _MIN_IMAGE_BYTES:
            logger.debug("Image too small (%d bytes): %s", len(content), url)
            return None

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.warning("Could not write image cache %s: %s", target, exc)
            return None
        return str(target)
