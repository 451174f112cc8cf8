"""
Configuration for the reload service.

Two layers:
- ReloadSettings: process-wide defaults loaded from environment variables
  with the PYRELOAD_ prefix, optionally overridden by a YAML file.
- ReloadOptions / ServiceConfig: per-call options validated once when the
  service is constructed. ServiceConfig is immutable.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from pyreload.client import DEFAULT_ROUTE, normalize_route

logger = logging.getLogger(__name__)


class ReloadError(Exception):
    """Base class for reload service errors."""

    pass


class ConfigurationError(ReloadError):
    """Raised when arguments or options are missing or invalid."""

    pass


class RouteRegistrationError(ReloadError):
    """Raised when a target app cannot register the routes reload needs."""

    pass


class ReloadSettings(BaseSettings):
    """Process-wide defaults."""

    model_config = SettingsConfigDict(
        env_prefix="PYRELOAD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="Listener bind host")
    port: int = Field(default=9856, description="Standalone WebSocket listener port")
    route: str = Field(default=DEFAULT_ROUTE, description="Route serving the client script")
    verbose: bool = Field(default=False, description="Log connections and broadcasts")
    log_level: str = Field(default="INFO", description="Log level for the CLI")

    # Config file path
    config_path: Path | None = Field(default=None, description="Path to YAML config file")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v

    def load_from_yaml(self, path: Path) -> None:
        """Load additional settings from a YAML file."""
        if not path.exists():
            return

        with open(path) as f:
            config = yaml.safe_load(f)

        if not config:
            return

        section = config.get("reload", config)
        for key, value in section.items():
            if key in type(self).model_fields:
                setattr(self, key, value)


@lru_cache
def get_settings() -> ReloadSettings:
    """Get cached settings instance."""
    settings = ReloadSettings()

    if settings.config_path:
        settings.load_from_yaml(settings.config_path)

    return settings


class P12Credentials(BaseModel):
    """PKCS12 bundle given as a file path or as already-loaded bytes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    p12_path: str | bytes | Path = Field(alias="p12Path")
    passphrase: str | None = None


class CertAndKeyCredentials(BaseModel):
    """PEM key and certificate, each given as inline text or a file path."""

    model_config = ConfigDict(frozen=True)

    key: str | bytes | Path | None = None
    cert: str | bytes | Path | None = None


class HttpsOptions(BaseModel):
    """TLS credential source. Exactly one branch is used; p12 wins if both are set."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    p12: P12Credentials | None = None
    cert_and_key: CertAndKeyCredentials | None = Field(default=None, alias="certAndKey")

    @model_validator(mode="after")
    def require_credentials(self) -> "HttpsOptions":
        if self.p12 is None and self.cert_and_key is None:
            raise ValueError(
                "Could not initialize reload HTTPS setup. "
                "Make sure to define a `p12` or `certAndKey` in the HTTPS options"
            )
        return self

    @property
    def source(self) -> P12Credentials | CertAndKeyCredentials:
        """The credential branch in use."""
        return self.p12 if self.p12 is not None else self.cert_and_key  # type: ignore[return-value]


class ReloadOptions(BaseModel):
    """User-facing options. Accepts snake_case names and the camelCase aliases."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    port: StrictInt = Field(default_factory=lambda: get_settings().port, gt=0, le=65535)
    host: StrictStr = Field(default_factory=lambda: get_settings().host)
    https: HttpsOptions | None = None
    force_wss: StrictBool = Field(default=False, alias="forceWss")
    verbose: StrictBool = Field(default_factory=lambda: get_settings().verbose)
    web_socket_server_wait_start: StrictBool = Field(
        default=False, alias="webSocketServerWaitStart"
    )
    route: StrictStr | None = None


class ServiceConfig(BaseModel):
    """Validated, immutable service configuration."""

    model_config = ConfigDict(frozen=True)

    port: int
    host: str
    attach_to_existing_listener: bool = False
    tls: HttpsOptions | None = None
    force_wss: bool = False
    verbose: bool = False
    defer_start: bool = False
    route: str = DEFAULT_ROUTE


def _option_names() -> set[str]:
    """Field names and aliases ReloadOptions accepts."""
    names = set()
    for name, field in ReloadOptions.model_fields.items():
        names.add(name)
        if field.alias:
            names.add(field.alias)
    return names


def _describe(exc: ValidationError) -> str:
    """Render the first validation error as 'option: message'."""
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"]) or "options"
    return f"{location}: {error['msg']}"


def build_service_config(
    opts: ReloadOptions | Mapping[str, Any] | None,
    attached: bool = False,
) -> ServiceConfig:
    """
    Validate options into a ServiceConfig.

    Args:
        opts: Option mapping (snake_case or camelCase keys) or ReloadOptions
        attached: Whether the caller supplied an existing server to attach to

    Raises:
        ConfigurationError: If any option is missing or has the wrong type
    """
    if opts is None:
        opts = {}

    if isinstance(opts, ReloadOptions):
        options = opts
    elif isinstance(opts, Mapping):
        unknown = sorted(str(key) for key in opts if key not in _option_names())
        if unknown:
            logger.warning(f"Ignoring unknown reload option(s): {', '.join(unknown)}")
        try:
            options = ReloadOptions.model_validate(dict(opts))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid reload options - {_describe(e)}") from e
    else:
        raise ConfigurationError("Lack of/invalid arguments provided to reload")

    route = normalize_route(options.route or get_settings().route)

    return ServiceConfig(
        port=options.port,
        host=options.host,
        attach_to_existing_listener=attached,
        tls=options.https,
        force_wss=options.force_wss,
        verbose=options.verbose,
        defer_start=options.web_socket_server_wait_start,
        route=route,
    )
