"""Application configuration using pydantic-settings.

Settings resolve in this order: explicit init values, the system
keychain (secrets only), environment variables, then ``.env``.
"""

from datetime import timedelta
from typing import Any, Iterable

from pydantic import ValidationInfo, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Read secret fields (the price-feed API key) from the keychain.

    Only fields named in ``credential_keys`` are looked up, so a locked or
    missing keyring backend never affects ordinary settings. Fields with
    no stored value are left for the environment and ``.env`` sources.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        credential_keys: Iterable[str] = CREDENTIAL_KEYS,
    ):
        super().__init__(settings_cls)
        self._credential_keys = frozenset(credential_keys)

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        if field_name.upper() not in self._credential_keys:
            return None, field_name, False
        return get_credential(field_name.upper()), field_name, False

    def __call__(self) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            if field_name.upper() not in self._credential_keys:
                continue
            value, key, _ = self.get_field_value(field_info, field_name)
            if value:
                found[key] = value
        return found


class Settings(BaseSettings):
    """Settings for the refresh service, the price feed and the database."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./snapshots.db"

    # CoinGecko (optional key - the keyless public API is used otherwise)
    COINGECKO_API_KEY: str = ""
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"

    # Refresh pipeline
    USE_MOCK_SOURCES: bool = True
    REFRESH_CONCURRENCY: int = 1
    PRICE_CACHE_MINUTES: int = 30
    PRICE_REQUEST_TIMEOUT_SECONDS: float = 10.0
    PRICE_PIPELINE_TIMEOUT_SECONDS: float = 20.0

    # JSON list of {"address", "type", "label"} used by scripts.seed_wallets
    TEST_WALLETS_JSON: str = ""

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("REFRESH_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Reject non-positive worker pool sizes."""
        if v < 1:
            raise ValueError(f"REFRESH_CONCURRENCY must be >= 1, got {v}")
        return v

    @field_validator(
        "PRICE_CACHE_MINUTES",
        "PRICE_REQUEST_TIMEOUT_SECONDS",
        "PRICE_PIPELINE_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_non_negative(cls, v: float, info: ValidationInfo) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize LOG_LEVEL to an uppercase ``logging`` level name."""
        level = str(v).strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {v!r}")
        return level

    @property
    def price_cache_window(self) -> timedelta:
        """How long a cached price may be reused by later snapshots."""
        return timedelta(minutes=self.PRICE_CACHE_MINUTES)


settings = Settings()
