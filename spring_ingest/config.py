import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Crawl order matters: "all" first so specific categories can re-tag its designs.
CATEGORY_PATHS = {
    "all": "/",
    "apparel": "/apparel",
    "accessories": "/accessories",
    "drinkware": "/Drinkware",
}


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(default="https://sgt-major-says.creator-spring.com", alias="INGEST_BASE_URL")
    store: str = Field(default="sgt-major-says", alias="INGEST_STORE")
    output_path: Path = Field(default=Path("data/springCatalog.json"), alias="INGEST_OUTPUT_PATH")

    # Rate limiting. Defaults are conservative to avoid 429s.
    max_retries: int = Field(default=8, ge=0, alias="INGEST_MAX_RETRIES")
    initial_retry_delay_ms: int = Field(default=10_000, ge=0, alias="INGEST_INITIAL_RETRY_DELAY_MS")
    max_retry_delay_ms: int = Field(default=120_000, ge=0, alias="INGEST_MAX_RETRY_DELAY_MS")
    batch_size: int = Field(default=1, ge=1, alias="INGEST_BATCH_SIZE")
    batch_delay_ms: int = Field(default=5_000, ge=0, alias="INGEST_BATCH_DELAY_MS")
    request_delay_ms: int = Field(default=3_000, ge=0, alias="INGEST_REQUEST_DELAY_MS")
    category_page_delay_ms: int = Field(default=4_000, ge=0, alias="INGEST_CATEGORY_PAGE_DELAY_MS")
    category_resolve_delay_ms: int = Field(default=8_000, ge=0, alias="INGEST_CATEGORY_RESOLVE_DELAY_MS")
    category_gap_delay_ms: int = Field(default=5_000, ge=0, alias="INGEST_CATEGORY_GAP_DELAY_MS")
    warmup_delay_ms: int = Field(default=5_000, ge=0, alias="INGEST_WARMUP_DELAY_MS")
    jitter_factor: float = Field(default=0.3, ge=0, le=1, alias="INGEST_JITTER_FACTOR")
    early_stop_threshold: int = Field(default=20, ge=1, alias="INGEST_EARLY_STOP_THRESHOLD")
    startup_delay_ms: int = Field(default=120_000, ge=0, alias="INGEST_STARTUP_DELAY_MS")
    startup_jitter_ms: int = Field(default=60_000, ge=0, alias="INGEST_STARTUP_JITTER_MS")
    max_category_pages: int = Field(default=200, ge=1, alias="INGEST_MAX_CATEGORY_PAGES")
    request_timeout_s: float = Field(default=30.0, gt=0, alias="INGEST_REQUEST_TIMEOUT_S")

    categories: List[str] = Field(default_factory=lambda: list(CATEGORY_PATHS), alias="INGEST_CATEGORIES")

    @field_validator("categories", mode="before")
    @classmethod
    def _split_categories(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return [c.strip().lower() for c in value if c and c.strip()]

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def output_gz_path(self) -> Path:
        return self.output_path.with_name(self.output_path.name + ".gz")

    def enabled_categories(self) -> List[str]:
        """Known categories in crawl order, filtered by the allow-list."""
        wanted = set(self.categories)
        return [key for key in CATEGORY_PATHS if key in wanted]


def load_env_file():
    # Repo-root .env wins; otherwise python-dotenv searches upward from the cwd.
    root_env = Path(__file__).resolve().parents[1] / ".env"
    if root_env.exists():
        load_dotenv(root_env)
    else:
        load_dotenv()


@lru_cache()
def get_settings() -> Settings:
    load_env_file()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        bad = [str(e["loc"][0]) for e in exc.errors()]
        detail = f"Invalid ingest configuration: {', '.join(bad)}"
        raise RuntimeError(detail) from exc
