from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"


@dataclass(frozen=True)
class BusinessConfig:
    default_labor_rate: Decimal = Decimal("100")
    default_tax_rate: Decimal = Decimal("0")
    payment_terms_days: int = 30
    approval_threshold: Decimal = Decimal("500")
    invoice_number_attempts: int = 50
    auto_invoice_on_completion: bool = True


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    business: BusinessConfig = field(default_factory=BusinessConfig)


def _decimal(value: object, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigError(f"[business].{key} must be a number, got {value!r}") from e


def parse_business(business: dict) -> BusinessConfig:
    defaults = BusinessConfig()
    cfg = BusinessConfig(
        default_labor_rate=_decimal(business.get("default_labor_rate", defaults.default_labor_rate), "default_labor_rate"),
        default_tax_rate=_decimal(business.get("default_tax_rate", defaults.default_tax_rate), "default_tax_rate"),
        payment_terms_days=int(business.get("payment_terms_days", defaults.payment_terms_days)),
        approval_threshold=_decimal(business.get("approval_threshold", defaults.approval_threshold), "approval_threshold"),
        invoice_number_attempts=int(business.get("invoice_number_attempts", defaults.invoice_number_attempts)),
        auto_invoice_on_completion=bool(business.get("auto_invoice_on_completion", defaults.auto_invoice_on_completion)),
    )
    if cfg.default_labor_rate < 0:
        raise ConfigError("[business].default_labor_rate cannot be negative")
    if not 0 <= cfg.default_tax_rate <= 100:
        raise ConfigError("[business].default_tax_rate must be between 0 and 100")
    if cfg.payment_terms_days < 0:
        raise ConfigError("[business].payment_terms_days cannot be negative")
    if cfg.invoice_number_attempts < 1:
        raise ConfigError("[business].invoice_number_attempts must be at least 1")
    return cfg


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    try:
        app = data["app"]
        db = data["db"]
        return AppConfig(
            name=str(app.get("name", "AutoShop")),
            log_level=str(app.get("log_level", "INFO")).upper(),
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
            ),
            business=parse_business(data.get("business", {})),
        )
    except ConfigError:
        raise
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
