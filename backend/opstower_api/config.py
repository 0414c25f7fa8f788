"""Service configuration, read from the environment at process start."""

import os
from decimal import Decimal

from pydantic import BaseModel, Field

from opstower_shared.models import Provider


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes")


def _env_providers(name: str, default: str) -> list[Provider]:
    raw = os.environ.get(name, default)
    return [Provider(p.strip()) for p in raw.split(",") if p.strip()]


class MayaConfig(BaseModel):
    public_key: str = ""
    secret_key: str = ""
    webhook_secret: str = ""
    base_url: str = "https://pg.paymaya.com"
    sandbox_mode: bool = False
    checkout_expiry_minutes: int = 15
    max_amount: Decimal = Decimal("100000")
    timeout_seconds: float = 8.0

    @classmethod
    def from_env(cls) -> "MayaConfig":
        sandbox = _env_bool("MAYA_SANDBOX_MODE")
        default_url = "https://pg-sandbox.paymaya.com" if sandbox else "https://pg.paymaya.com"
        return cls(
            public_key=os.environ.get("MAYA_PUBLIC_KEY", ""),
            secret_key=os.environ.get("MAYA_SECRET_KEY", ""),
            webhook_secret=os.environ.get("MAYA_WEBHOOK_SECRET", ""),
            base_url=os.environ.get("MAYA_BASE_URL", default_url),
            sandbox_mode=sandbox,
            max_amount=Decimal(os.environ.get("MAYA_MAX_AMOUNT", "100000")),
            timeout_seconds=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", 8)),
        )


class EBANXConfig(BaseModel):
    integration_key: str = ""
    webhook_secret: str = ""
    base_url: str = "https://api.ebanx.com/ws"
    sandbox_mode: bool = False
    payment_timeout_minutes: int = 30
    max_amount: Decimal = Decimal("100000")
    timeout_seconds: float = 8.0

    @classmethod
    def from_env(cls) -> "EBANXConfig":
        sandbox = _env_bool("EBANX_SANDBOX_MODE")
        default_url = "https://sandbox.ebanx.com/ws" if sandbox else "https://api.ebanx.com/ws"
        return cls(
            integration_key=os.environ.get("EBANX_API_KEY", ""),
            webhook_secret=os.environ.get("EBANX_WEBHOOK_SECRET", ""),
            base_url=os.environ.get("EBANX_BASE_URL", default_url),
            sandbox_mode=sandbox,
            payment_timeout_minutes=int(os.environ.get("EBANX_PAYMENT_TIMEOUT_MINUTES", 30)),
            max_amount=Decimal(os.environ.get("GCASH_MAX_AMOUNT", "100000")),
            timeout_seconds=float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", 8)),
        )


class Settings(BaseModel):
    data_dir: str = "/app/data"
    log_level: str = "INFO"
    max_amount: Decimal = Decimal("100000")
    default_currency: str = "PHP"
    default_provider: Provider = Provider.MAYA
    provider_priority: list[Provider] = Field(
        default_factory=lambda: [Provider.MAYA, Provider.GCASH]
    )
    refund_auto_approve_limit: Decimal = Decimal("5000")
    expiry_grace_seconds: int = 60
    reconcile_after_seconds: int = 900
    cb_failure_threshold: int = 5
    cb_recovery_timeout: int = 30
    cb_half_open_max_calls: int = 3
    maya: MayaConfig = Field(default_factory=MayaConfig)
    ebanx: EBANXConfig = Field(default_factory=EBANXConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=os.environ.get("DATA_DIR", "/app/data"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            max_amount=Decimal(os.environ.get("PAYMENT_MAX_AMOUNT", "100000")),
            default_currency=os.environ.get("DEFAULT_CURRENCY", "PHP"),
            default_provider=Provider(os.environ.get("DEFAULT_PROVIDER", "maya")),
            provider_priority=_env_providers("PROVIDER_PRIORITY", "maya,gcash"),
            refund_auto_approve_limit=Decimal(os.environ.get("REFUND_AUTO_APPROVE_LIMIT", "5000")),
            expiry_grace_seconds=int(os.environ.get("EXPIRY_GRACE_SECONDS", 60)),
            reconcile_after_seconds=int(os.environ.get("RECONCILE_AFTER_SECONDS", 900)),
            cb_failure_threshold=int(os.environ.get("CB_FAILURE_THRESHOLD", 5)),
            cb_recovery_timeout=int(os.environ.get("CB_RECOVERY_TIMEOUT", 30)),
            cb_half_open_max_calls=int(os.environ.get("CB_HALF_OPEN_MAX_CALLS", 3)),
            maya=MayaConfig.from_env(),
            ebanx=EBANXConfig.from_env(),
        )
