from __future__ import annotations

from app.config import Settings


def test_settings_read_backlink_values_from_environment(monkeypatch):
    monkeypatch.setenv("BACKLINK_BATCH_LIMIT", "7")
    monkeypatch.setenv("CRON_SECRET", "nightly")
    monkeypatch.setenv("RECIPROCAL_URLS", '["https://www.pitchmypage.com"]')

    loaded = Settings(_env_file=None)

    assert loaded.backlink_batch_limit == 7
    assert loaded.cron_secret == "nightly"
    assert loaded.reciprocal_urls == ["https://www.pitchmypage.com"]


def test_settings_only_carry_fields_the_service_reads():
    fields = set(Settings.model_fields)

    assert {"secret_key", "host", "port"}.isdisjoint(fields)
    assert {"database_url", "backlink_fetch_timeout_seconds", "metrics_backend"} <= fields
