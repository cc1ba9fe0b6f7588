# catalog_ingest/config/settings.py

"""Central configuration for the catalog_ingest pipeline."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    """Read a float override from the environment."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    """Read an int override from the environment."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Settings:
    """Central configuration for the catalog_ingest pipeline."""

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = Path(__file__).resolve().parent / "selectors.json"
    LOGS_DIR: Path = BASE_DIR / "logs"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "WARNING")   # console handler level
    DB_PATH: Path = Path(
        os.getenv("CATALOG_DB_PATH", str(BASE_DIR / "data" / "catalog.db"))
    )
    PROGRESS_PATH: Path = Path(
        os.getenv("PROGRESS_PATH", str(BASE_DIR / "data" / "rescrape-progress.json"))
    )
    TAXONOMY_PATH: Path = Path(
        os.getenv("TAXONOMY_PATH", str(BASE_DIR / "data" / "taxonomy.json"))
    )
    IMAGE_CACHE_DIR: Path = Path(
        os.getenv("IMAGE_CACHE_DIR", str(BASE_DIR / "public" / "cache"))
    )

    # --- Scraping ---
    REQUEST_DELAY: float = 2.0          # Seconds between requests
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    MAX_PAGES: int = 10                 # Max pagination depth per provider
    HEADLESS_TIMEOUT_MS: int = 30000    # Playwright navigation timeout

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 120.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
        "slide to verify",
        "punish",
    ]

    # --- Fetch orchestration ---
    PROVIDER_TIMEOUT: float = _env_float("PROVIDER_TIMEOUT", 20.0)
    PROVIDER_CONCURRENCY: int = 2       # In-flight calls per provider

    # --- Health check ---
    HEALTH_TIMEOUT: int = 10            # Seconds per homepage request
    HEALTH_SLOW_MS: float = 5000.0
    HEALTH_CANARY_QUERY: str = os.getenv(
        "HEALTH_CANARY_QUERY", "stainless steel water bottle"
    )

    # --- Result cache ---
    RESULT_CACHE_TTL: float = 300.0
    DEFAULT_PAGE_LIMIT: int = 50
    MAX_PAGE_LIMIT: int = 200

    # --- Quality filtering ---
    MOQ_FLOOR: int = 2
    BANNED_KEYWORD_PATTERNS: list[str] = [
        r"\bcustom(?:i[sz]ed|i[sz]ation)?\s+(?:service|design|logo|order|printing)s?\b",
        r"\b(?:design|printing|sourcing|inspection|shipping|logistics|consulting|photography|translation)\s+services?\b",
        r"\bservices?\s+only\b",
        r"\bmade\s+to\s+order\s+only\b",
        r"\b(?:sourcing|buying|purchasing|dropshipping)\s+agents?\b",
        r"\bfreight\s+forward(?:er|ing)\b",
        r"\bdoor\s+to\s+door\s+(?:shipping|delivery)\b",
        r"\bdeposit\s+link\b",
        r"\bextra\s+fee\b",
        r"\bpayment\s+link\b",
        r"定制服务",
        r"代购",
        r"运费补拍",
    ]

    # --- Batch runner ---
    BATCH_SIZE: int = 15
    CHUNK_SIZE: int = 3                 # 3 (gentle) .. 20 (aggressive)
    CHUNK_DELAY: float = 8.0
    BATCH_DELAY: float = 20.0
    DISPATCH_TIMEOUT: float = 90.0
    GOOD_ATTRIBUTE_THRESHOLD: int = 10
    BLOCK_THRESHOLD: int = _env_int("BLOCK_THRESHOLD", 15)
    BLOCK_COOLDOWN: float = _env_float("BLOCK_COOLDOWN", 1800.0)
    RATE_LIMIT_RATIO: float = 0.5
    RATE_LIMIT_BACKOFF: float = 30.0
    RESCRAPE_URL: str = os.getenv(
        "RESCRAPE_URL", "http://localhost:3007/api/rescrape"
    )

    # --- Top-off ---
    MIN_COVERAGE: int = 100
    MAX_PER_LEAF: int = 480
    TERMS_CAP: int = 18
    TOKENS_MAX: int = 8
    TERM_COMBOS: int = 1
    STOP_WORDS: frozenset[str] = frozenset({
        "and", "the", "for", "with", "from", "your", "you", "are",
        "can", "all", "any", "new", "hot", "best", "top", "get", "buy",
    })
    QUERY_MODIFIERS: list[str] = [
        "wholesale", "bulk", "supplier", "factory", "manufacturer",
        "oem", "odm", "private label", "ready to ship", "in stock",
        "low moq", "direct", "exporter", "distributor", "high quality",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Platforms (provider registry) ---
    ALL_PLATFORMS: str = "ALL"
    AVAILABLE_PLATFORMS: list[dict[str, str]] = [
        {
            "id": "ALIBABA",
            "label": "Alibaba",
            "provider": "catalog_ingest.providers.alibaba_provider.AlibabaProvider",
        },
        {
            "id": "C1688",
            "label": "1688",
            "provider": "catalog_ingest.providers.c1688_provider.C1688Provider",
        },
        {
            "id": "MADE_IN_CHINA",
            "label": "Made-in-China",
            "provider": "catalog_ingest.providers.made_in_china_provider.MadeInChinaProvider",
        },
        {
            "id": "INDIAMART",
            "label": "IndiaMART",
            "provider": "catalog_ingest.providers.indiamart_provider.IndiaMartProvider",
        },
    ]
