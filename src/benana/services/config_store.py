"""User configuration persisted as JSON under the studio root.

The Gemini API key is stored Fernet-encrypted; the Fernet key lives in a separate
owner-only file next to the config.
"""

import json
import math
import os
from typing import Literal, Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field, field_validator

from benana.core.paths import StudioPaths
from benana.models.generation_request import ModelName

logger = structlog.get_logger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 8
DEFAULT_CONCURRENCY = 2
DEFAULT_MODEL = ModelName.GEMINI_3_PRO_IMAGE_PREVIEW

Theme = Literal["dark", "light", "system"]
THEMES = ("dark", "light", "system")
NULLABLE_FIELDS = ("monthly_spend_limit_usd", "total_spend_limit_usd")


def normalize_concurrency(value: float | int | None) -> int:
    """Clamp to 1..8 (floored); missing or non-numeric values use the default."""
    if not value or (isinstance(value, float) and math.isnan(value)):
        return DEFAULT_CONCURRENCY
    return min(MAX_CONCURRENCY, max(MIN_CONCURRENCY, math.floor(value)))


def normalize_spend_limit(value: float | int | None) -> float | None:
    """Non-positive or missing limits mean "no limit"; others round to 3 decimals."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    if value <= 0:
        return None
    return round(float(value), 3)


def normalize_model_name(value: str | None) -> ModelName:
    if value == ModelName.GEMINI_25_FLASH_IMAGE_PREVIEW.value:
        return ModelName.GEMINI_25_FLASH_IMAGE
    try:
        return ModelName(value) if value else DEFAULT_MODEL
    except ValueError:
        return DEFAULT_MODEL


class StudioConfigPublic(BaseModel):
    """Configuration as shown to clients. Never contains the API key itself."""

    model_config = ConfigDict(populate_by_name=True)

    has_api_key: bool = Field(alias="hasApiKey")
    default_model: ModelName = Field(alias="defaultModel")
    theme: Theme
    onboarding_completed: bool = Field(alias="onboardingCompleted")
    queue_concurrency: int = Field(alias="queueConcurrency")
    monthly_spend_limit_usd: Optional[float] = Field(alias="monthlySpendLimitUsd")
    total_spend_limit_usd: Optional[float] = Field(alias="totalSpendLimitUsd")


class ConfigPatch(BaseModel):
    """Partial config update. Only explicitly provided fields are applied."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    default_model: Optional[ModelName] = Field(default=None, alias="defaultModel")
    theme: Optional[Theme] = None
    onboarding_completed: Optional[bool] = Field(default=None, alias="onboardingCompleted")
    queue_concurrency: Optional[int] = Field(default=None, alias="queueConcurrency")
    monthly_spend_limit_usd: Optional[float] = Field(default=None, alias="monthlySpendLimitUsd")
    total_spend_limit_usd: Optional[float] = Field(default=None, alias="totalSpendLimitUsd")


class StoredConfig(BaseModel):
    """Contents of ``config.json``.

    Invalid or missing values are replaced by their defaults while loading. Unknown
    keys are kept so they survive a rewrite.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    encrypted_api_key: Optional[str] = Field(default=None, alias="encryptedApiKey")
    default_model: ModelName = Field(default=DEFAULT_MODEL, alias="defaultModel")
    theme: Theme = "dark"
    onboarding_completed: bool = Field(default=False, alias="onboardingCompleted")
    queue_concurrency: int = Field(default=DEFAULT_CONCURRENCY, alias="queueConcurrency")
    monthly_spend_limit_usd: Optional[float] = Field(default=None, alias="monthlySpendLimitUsd")
    total_spend_limit_usd: Optional[float] = Field(default=None, alias="totalSpendLimitUsd")

    @field_validator("encrypted_api_key", mode="before")
    @classmethod
    def validate_encrypted_api_key(cls, value: object) -> Optional[str]:
        return value if isinstance(value, str) and value else None

    @field_validator("default_model", mode="before")
    @classmethod
    def validate_default_model(cls, value: object) -> ModelName:
        return normalize_model_name(value if isinstance(value, str) else None)

    @field_validator("theme", mode="before")
    @classmethod
    def validate_theme(cls, value: object) -> str:
        return value if value in THEMES else "dark"

    @field_validator("onboarding_completed", mode="before")
    @classmethod
    def validate_onboarding_completed(cls, value: object) -> bool:
        return value is True

    @field_validator("queue_concurrency", mode="before")
    @classmethod
    def validate_queue_concurrency(cls, value: object) -> int:
        return normalize_concurrency(_as_number(value))

    @field_validator("monthly_spend_limit_usd", "total_spend_limit_usd", mode="before")
    @classmethod
    def validate_spend_limit(cls, value: object) -> Optional[float]:
        return normalize_spend_limit(_as_number(value))


class ConfigStore:
    """Reads, normalizes and writes ``config.json``.

    The file is loaded once; every update is written back immediately.
    """

    def __init__(self, paths: StudioPaths):
        self.paths = paths
        self._cipher: Optional[Fernet] = None
        self._config = self._read_config_file()
        self._write_config_file()

    def _read_config_file(self) -> StoredConfig:
        if not self.paths.config.exists():
            return StoredConfig()

        try:
            parsed = json.loads(self.paths.config.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("config.unreadable", path=str(self.paths.config), error=str(e))
            return StoredConfig()

        if not isinstance(parsed, dict):
            logger.warning("config.unreadable", path=str(self.paths.config), error="not an object")
            return StoredConfig()

        return StoredConfig.model_validate(parsed)

    def _write_config_file(self) -> None:
        data = self._config.model_dump(mode="json", by_alias=True)
        if data.get("encryptedApiKey") is None:
            data.pop("encryptedApiKey", None)
        self.paths.config.parent.mkdir(parents=True, exist_ok=True)
        self.paths.config.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _fernet(self) -> Fernet:
        """Load the encryption key once, generating it on first use."""
        if self._cipher is not None:
            return self._cipher

        key_file = self.paths.api_key_file
        if key_file.exists():
            key = key_file.read_bytes().strip()
            try:
                self._cipher = Fernet(key)
                return self._cipher
            except ValueError:
                logger.warning("config.api_key_file_invalid", path=str(key_file))

        key = Fernet.generate_key()
        key_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(key)
        self._cipher = Fernet(key)
        return self._cipher

    def get_api_key(self) -> str | None:
        """Decrypted API key, or None if unset or no longer decryptable."""
        encrypted = self._config.encrypted_api_key
        if not encrypted:
            return None
        try:
            return self._fernet().decrypt(encrypted.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError):
            logger.warning("config.api_key_undecryptable")
            return None

    def set_api_key(self, api_key: str) -> None:
        """Encrypt and store the API key.

        Raises:
            ValueError: If the key is blank
        """
        api_key = api_key.strip()
        if not api_key:
            raise ValueError("API key must not be empty")
        self._config.encrypted_api_key = (
            self._fernet().encrypt(api_key.encode("utf-8")).decode("ascii")
        )
        self._write_config_file()
        logger.info("config.api_key_updated")

    def clear_api_key(self) -> None:
        self._config.encrypted_api_key = None
        self._write_config_file()
        logger.info("config.api_key_cleared")

    def update_config(self, patch: ConfigPatch | dict) -> StudioConfigPublic:
        """Apply a partial update and persist it.

        Spend limits can be cleared by sending ``null`` explicitly; other fields
        ignore ``null``.

        Raises:
            pydantic.ValidationError: If the patch has unknown keys or invalid values
        """
        if isinstance(patch, dict):
            patch = ConfigPatch.model_validate(patch)

        provided = patch.model_fields_set
        updates = {
            name: getattr(patch, name)
            for name in provided
            if getattr(patch, name) is not None or name in NULLABLE_FIELDS
        }
        self._config = StoredConfig.model_validate({**self._config.model_dump(), **updates})

        self._write_config_file()
        logger.info("config.updated", fields=sorted(provided))
        return self.get_public_config()

    def get_public_config(self) -> StudioConfigPublic:
        return StudioConfigPublic(
            has_api_key=bool(self.get_api_key()),
            default_model=self._config.default_model,
            theme=self._config.theme,
            onboarding_completed=self._config.onboarding_completed,
            queue_concurrency=self._config.queue_concurrency,
            monthly_spend_limit_usd=self._config.monthly_spend_limit_usd,
            total_spend_limit_usd=self._config.total_spend_limit_usd,
        )


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
