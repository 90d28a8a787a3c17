"""Config store tests: normalization, partial updates and API key encryption."""

import json
import stat

import pytest
from pydantic import ValidationError

from benana.models.generation_request import ModelName
from benana.services.config_store import (
    DEFAULT_CONCURRENCY,
    ConfigStore,
    StoredConfig,
    normalize_concurrency,
    normalize_model_name,
    normalize_spend_limit,
)


@pytest.mark.parametrize(
    "value,expected",
    [(None, DEFAULT_CONCURRENCY), (0, DEFAULT_CONCURRENCY), (3, 3), (3.9, 3), (-4, 1), (20, 8)],
)
def test_normalize_concurrency(value, expected):
    assert normalize_concurrency(value) == expected


@pytest.mark.parametrize(
    "value,expected", [(None, None), (0, None), (-1, None), (12.34567, 12.346), (5, 5.0)]
)
def test_normalize_spend_limit(value, expected):
    assert normalize_spend_limit(value) == expected


def test_normalize_model_name():
    assert normalize_model_name("gemini-2.5-flash-image-preview") == ModelName.GEMINI_25_FLASH_IMAGE
    assert normalize_model_name("unknown-model") == ModelName.GEMINI_3_PRO_IMAGE_PREVIEW
    assert normalize_model_name(None) == ModelName.GEMINI_3_PRO_IMAGE_PREVIEW


def test_defaults_are_written_on_first_start(paths):
    store = ConfigStore(paths)

    config = store.get_public_config()
    assert config.has_api_key is False
    assert config.theme == "dark"
    assert config.queue_concurrency == DEFAULT_CONCURRENCY
    assert config.monthly_spend_limit_usd is None
    assert json.loads(paths.config.read_text())["queueConcurrency"] == DEFAULT_CONCURRENCY


def test_corrupt_or_invalid_file_is_normalized(paths):
    paths.config.write_text("{not json")
    assert ConfigStore(paths).get_public_config().theme == "dark"

    paths.config.write_text(
        json.dumps(
            {
                "theme": "neon",
                "queueConcurrency": 42,
                "monthlySpendLimitUsd": -3,
                "totalSpendLimitUsd": "lots",
                "defaultModel": "gemini-2.5-flash-image-preview",
            }
        )
    )
    config = ConfigStore(paths).get_public_config()

    assert config.theme == "dark"
    assert config.queue_concurrency == 8
    assert config.monthly_spend_limit_usd is None
    assert config.total_spend_limit_usd is None
    assert config.default_model == ModelName.GEMINI_25_FLASH_IMAGE


def test_partial_update_only_touches_provided_fields(paths):
    store = ConfigStore(paths)
    store.update_config({"monthlySpendLimitUsd": 10, "theme": "light"})

    config = store.update_config({"queueConcurrency": 5})

    assert config.queue_concurrency == 5
    assert config.theme == "light"
    assert config.monthly_spend_limit_usd == 10.0

    cleared = store.update_config({"monthlySpendLimitUsd": None, "theme": None})
    assert cleared.monthly_spend_limit_usd is None
    assert cleared.theme == "light"

    reloaded = ConfigStore(paths).get_public_config()
    assert reloaded.queue_concurrency == 5
    assert reloaded.theme == "light"


def test_unknown_keys_are_rejected(paths):
    with pytest.raises(ValidationError):
        ConfigStore(paths).update_config({"queueConcurency": 3})


def test_api_key_is_encrypted_at_rest(paths):
    store = ConfigStore(paths)
    store.set_api_key("  AIza-secret  ")

    assert store.get_api_key() == "AIza-secret"
    assert store.get_public_config().has_api_key is True
    assert "AIza-secret" not in paths.config.read_text()
    assert stat.S_IMODE(paths.api_key_file.stat().st_mode) == 0o600

    assert ConfigStore(paths).get_api_key() == "AIza-secret"

    store.clear_api_key()
    assert store.get_api_key() is None


def test_blank_api_key_is_rejected(paths):
    with pytest.raises(ValueError, match="must not be empty"):
        ConfigStore(paths).set_api_key("   ")


def test_lost_encryption_key_reads_as_no_key(paths):
    store = ConfigStore(paths)
    store.set_api_key("secret")
    paths.api_key_file.unlink()

    assert ConfigStore(paths).get_api_key() is None


def test_stored_config_replaces_invalid_values_with_defaults():
    config = StoredConfig.model_validate(
        {
            "queueConcurrency": True,
            "onboardingCompleted": "yes",
            "encryptedApiKey": "",
            "totalSpendLimitUsd": 7.12345,
        }
    )

    assert config.queue_concurrency == DEFAULT_CONCURRENCY
    assert config.onboarding_completed is False
    assert config.encrypted_api_key is None
    assert config.total_spend_limit_usd == 7.123


def test_unknown_file_keys_survive_updates(paths):
    paths.config.write_text(json.dumps({"windowBounds": {"width": 800}, "theme": "light"}))

    store = ConfigStore(paths)
    store.update_config({"queueConcurrency": 3})

    written = json.loads(paths.config.read_text())
    assert written["windowBounds"] == {"width": 800}
    assert written["theme"] == "light"
    assert written["queueConcurrency"] == 3
    assert "encryptedApiKey" not in written


def test_encryption_key_is_loaded_once(paths):
    store = ConfigStore(paths)
    store.set_api_key("secret")
    paths.api_key_file.unlink()

    assert store.get_api_key() == "secret"
