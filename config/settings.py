"""Глобальные настройки SmartNet.

Настройки разделены по доменам (Telegram, TonAPI, платежи, выплаты, реферальная
система, членство и т.д.), что позволяет менять параметры программы без правки кода.
Вся конфигурация загружается из переменных окружения через Pydantic Settings,
поэтому бэкенд легко деплоить в любой инфраструктуре (Docker, Kubernetes, serverless).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class TelegramSettings(BaseModel):
    """Конфигурация Telegram-бота."""

    token: str = Field(..., description="Токен бота")
    bot_username: str = "IEPRSmartBot"
    admins: list[int] = Field(default_factory=list, description="ID операторов/админов")


class TonApiSettings(BaseModel):
    """Индексер TonAPI, через который читаем транзакции по хешу."""

    base_url: AnyHttpUrl = Field(
        "https://tonapi.io", description="Базовый URL TonAPI v2"
    )
    api_key: SecretStr | None = Field(None, description="Bearer-ключ TonAPI (опционально)")
    network: Literal["mainnet", "testnet"] = "mainnet"
    request_timeout: PositiveInt = 10

    @field_validator("api_key", mode="before")
    @classmethod
    def _empty_key_to_none(cls, value):
        return _blank_to_none(value)


class PaymentSettings(BaseModel):
    """Параметры проверки входящего платежа за пакет."""

    treasury_address: str | None = Field(None, description="Кошелёк казначейства")
    jetton_address: str | None = Field(None, description="Мастер-адрес принимаемого jetton (USDT)")
    required_amount: PositiveFloat | None = 30.0
    decimals: NonNegativeInt | None = 6
    simulate_verification: bool = Field(
        False, description="Пропускать сверку с сетью (только dev)"
    )
    accept_mock_hashes: bool = Field(
        False, description="Принимать хеши с mock-префиксом без сверки (только dev)"
    )
    mock_prefix: str = "mock_"
    canonicalize_addresses: bool = Field(
        False, description="Сравнивать адреса в raw-форме (0:hex) вместо строк"
    )

    @field_validator("treasury_address", "jetton_address", mode="before")
    @classmethod
    def _empty_address_to_none(cls, value):
        return _blank_to_none(value)


class TransferSettings(BaseModel):
    """Исходящие jetton-переводы (выплаты наград и ежемесячные клеймы)."""

    mode: Literal["disabled", "simulate", "live"] = "simulate"
    reward_jetton_address: str | None = Field(None, description="Мастер-адрес IEPR")
    reward_decimals: NonNegativeInt = 9
    payout_jetton_address: str | None = Field(
        None, description="Мастер-адрес USDT для выводов (по умолчанию payment.jetton_address)"
    )
    payout_decimals: NonNegativeInt = 6
    signer_mnemonic: SecretStr | None = Field(None, description="Мнемоника горячего кошелька")
    wallet_version: Literal["v3r2", "v4r2", "v5r1"] = "v4r2"
    submit_timeout: PositiveInt = 30
    simulated_prefix: str = "sim_"

    @field_validator(
        "reward_jetton_address", "payout_jetton_address", "signer_mnemonic", mode="before"
    )
    @classmethod
    def _empty_to_none(cls, value):
        return _blank_to_none(value)


class CacheSettings(BaseModel):
    """Настройки кешей (aiocache поддерживает memory / redis)."""

    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = 300
    redis_dsn: str | None = None


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite (по умолчанию) и готовность к Postgres."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./database/smartnet.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False


class ReferralSettings(BaseModel):
    """Двухуровневые комиссии, лидерство и milestone-бонусы."""

    package_price: PositiveFloat = 30.0
    l1_percent: NonNegativeFloat = 20.0
    l2_percent: NonNegativeFloat = 10.0
    leadership_bonus_percent: NonNegativeFloat = 5.0
    leadership_threshold: PositiveInt = 5
    l1_milestone_step: NonNegativeInt = Field(0, description="0 отключает milestone L1")
    l1_milestone_bonus_percent: NonNegativeFloat = 0.0
    l2_milestone_step: NonNegativeInt = Field(0, description="0 отключает milestone L2")
    l2_milestone_bonus_percent: NonNegativeFloat = 0.0
    app_url: AnyHttpUrl = Field(
        "https://indempower.com", description="Публичный URL для реферальных ссылок"
    )


class MembershipSettings(BaseModel):
    """Пакет членства и ежемесячный дрип."""

    duration_months: PositiveInt = 12
    tokens_per_package: NonNegativeInt = 300
    legacy_coin_cap: NonNegativeInt = 300
    monthly_base: PositiveInt | None = Field(
        None, description="Фиксированный размер месячного клейма вместо ceil(total / 12)"
    )
    business_id_prefix: str = "IEPR"


class AppSettings(BaseSettings):
    """Главный контейнер настроек SmartNet."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    telegram: TelegramSettings
    tonapi: TonApiSettings = TonApiSettings()
    payment: PaymentSettings = PaymentSettings()
    transfer: TransferSettings = TransferSettings()
    cache: CacheSettings = CacheSettings()
    database: DatabaseSettings = DatabaseSettings()
    referral: ReferralSettings = ReferralSettings()
    membership: MembershipSettings = MembershipSettings()

    @property
    def is_production(self) -> bool:
        """True, если бэкенд запущен в продовой среде."""

        return self.environment == "prod"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Вызываем во всех частях приложения (handlers, services). Значения кэшируются,
    поэтому инициализация .env происходит ровно один раз за процесс.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()  # type: ignore[call-arg]
    return _settings


__all__ = [
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "MembershipSettings",
    "PaymentSettings",
    "ReferralSettings",
    "TelegramSettings",
    "TonApiSettings",
    "TransferSettings",
    "get_settings",
]
