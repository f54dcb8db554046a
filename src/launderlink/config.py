from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomllib


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
    connect_timeout: int = 5


@dataclass(frozen=True)
class BusinessConfig:
    shop_name: str = "LaunderLink Pro"
    currency_exponent: int = 0
    default_duration_hours: int = 48
    country_code: str = "62"
    tracking_base_url: str = "http://127.0.0.1:5000/track"
    timezone: str = "Asia/Jakarta"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class AuthConfig:
    url: str
    anon_key: str
    session_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class SyncConfig:
    policy: str = "surface"
    max_retries: int = 2


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    business: BusinessConfig
    auth: AuthConfig
    sync: SyncConfig


SYNC_POLICIES = {"surface", "retry", "revert"}


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    return parse_config(data)


def parse_config(data: dict) -> AppConfig:
    try:
        app = data["app"]
        db = data["db"]
        auth = data["auth"]
        business = data.get("business", {})
        sync = data.get("sync", {})

        policy = str(sync.get("policy", "surface")).lower()
        if policy not in SYNC_POLICIES:
            raise ConfigError(f"sync.policy must be one of {sorted(SYNC_POLICIES)}, got {policy!r}")

        timeout = float(auth.get("session_timeout_seconds", 5.0))
        if timeout <= 0:
            raise ConfigError("auth.session_timeout_seconds must be > 0")

        duration = int(business.get("default_duration_hours", 48))
        if duration <= 0:
            raise ConfigError("business.default_duration_hours must be > 0")

        tz_name = str(business.get("timezone", "Asia/Jakarta"))
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"business.timezone is not a known time zone: {tz_name!r}") from e

        return AppConfig(
            name=str(app.get("name", "LaunderLink")),
            log_level=str(app.get("log_level", "INFO")).upper(),
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
                connect_timeout=int(db.get("connect_timeout", 5)),
            ),
            business=BusinessConfig(
                shop_name=str(business.get("shop_name", "LaunderLink Pro")),
                currency_exponent=int(business.get("currency_exponent", 0)),
                default_duration_hours=duration,
                country_code=str(business.get("country_code", "62")),
                tracking_base_url=str(business.get("tracking_base_url", "http://127.0.0.1:5000/track")),
                timezone=tz_name,
            ),
            auth=AuthConfig(
                url=str(auth["url"]).rstrip("/"),
                anon_key=str(auth["anon_key"]),
                session_timeout_seconds=timeout,
            ),
            sync=SyncConfig(
                policy=policy,
                max_retries=int(sync.get("max_retries", 2)),
            ),
        )
    except ConfigError:
        raise
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
