import pytest

from spring_ingest.config import Settings, get_settings


def test_env_aliases_and_category_allow_list():
    settings = Settings(**{
        "INGEST_BASE_URL": "https://shop.test/",
        "INGEST_CATEGORIES": "Drinkware, ALL ,,bogus",
        "INGEST_BATCH_SIZE": "2",
    })
    assert settings.base_url == "https://shop.test"
    assert settings.batch_size == 2
    assert settings.enabled_categories() == ["all", "drinkware"]


def test_defaults():
    settings = Settings()
    assert settings.enabled_categories() == ["all", "apparel", "accessories", "drinkware"]
    assert settings.max_retries == 8
    assert settings.early_stop_threshold == 20
    assert settings.output_gz_path.name == "springCatalog.json.gz"


def test_invalid_environment_is_a_runtime_error(monkeypatch):
    monkeypatch.setenv("INGEST_MAX_RETRIES", "-1")
    get_settings.cache_clear()
    try:
        with pytest.raises(RuntimeError, match="max_retries|INGEST_MAX_RETRIES"):
            get_settings()
    finally:
        get_settings.cache_clear()
