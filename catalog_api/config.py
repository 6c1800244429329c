import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from spring_ingest.config import load_env_file


class Settings(BaseModel):
    admin_password: Optional[str] = Field(default=None, alias="ADMIN_PASSWORD")
    cron_secret: Optional[str] = Field(default=None, alias="CRON_SECRET")
    catalog_path: Path = Field(default=Path("data/springCatalog.json"), alias="CATALOG_PATH")
    env: str = Field(default="local", alias="APP_ENV")


@lru_cache()
def get_settings() -> Settings:
    load_env_file()
    try:
        return Settings(**os.environ)
    except ValidationError as exc:
        bad = [str(e["loc"][0]) for e in exc.errors()]
        raise RuntimeError(f"Invalid API configuration: {', '.join(bad)}") from exc
