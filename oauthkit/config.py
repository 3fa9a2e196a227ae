"""Configuration system for oauthkit using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.oauthkit] section (project-level)
3. ./oauthkit.toml (project-level, explicit)
4. ~/.config/oauthkit/config.toml (user-level, overrides project)
5. $OAUTHKIT_CONFIG_FILE (explicit file)
6. Environment variables (highest priority)

Environment variables use the OAUTHKIT_ prefix with nested delimiter __.
Example: OAUTHKIT_FLOW__APP_URL, OAUTHKIT_DEMO__CODE_TTL
"""

from __future__ import annotations

import logging
import os
import sys
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger("oauthkit.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    explicit = Path("oauthkit.toml")
    if explicit.exists():
        files.append(explicit)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "oauthkit" / "config.toml"
    else:
        user_config = Path("~/.config/oauthkit/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("OAUTHKIT_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("oauthkit", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
}

_REDACTED = "********"


class FlowSettings(BaseSettings):
    """Sign-in flow settings.

    Environment prefix: OAUTHKIT_FLOW__
    Example: OAUTHKIT_FLOW__APP_URL=https://myapp.com
    Example: OAUTHKIT_FLOW__DEEPLINK_SCHEME=myapp
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT_FLOW__",
        extra="ignore",
    )

    app_url: str = Field(
        default="http://localhost:5173",
        description="Base URL of the embedding application",
    )
    deeplink_scheme: str = Field(
        default="myapp",
        description="Scheme registered by the native shell for deeplinks",
    )
    native_marker: str = Field(
        default="despia",
        description="User-Agent marker identifying the native web-view shell",
    )
    verify_state: bool = Field(
        default=False,
        description="Reject callbacks whose state does not match a pending sign-in",
    )
    state_max_age: float = Field(
        default=600.0,
        gt=0,
        description="Seconds a stored state stays valid when verification is enabled",
    )
    max_pending_states: int = Field(
        default=1000,
        gt=0,
        description="Maximum number of stored states awaiting a callback",
    )
    storage_backend: Literal["memory", "none"] = Field(
        default="memory",
        description="Session storage backend: memory, or none (no persistence medium)",
    )

    @field_validator("app_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        """Store the application URL without a trailing slash."""
        return v.rstrip("/")

    @field_validator("deeplink_scheme")
    @classmethod
    def _validate_scheme(cls, v: str) -> str:
        """Reject schemes containing separators."""
        if not v or any(c in v for c in ":/?#"):
            msg = f"Invalid deeplink scheme: {v!r}"
            raise ValueError(msg)
        return v


class ProviderSettings(BaseSettings):
    """Identity provider settings.

    Environment prefix: OAUTHKIT_PROVIDER__
    Example: OAUTHKIT_PROVIDER__BASE_URL=http://localhost:3001/demo/provider
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT_PROVIDER__",
        extra="ignore",
    )

    provider: Literal["mock"] = Field(
        default="mock",
        description="Provider implementation to use",
    )
    base_url: str = Field(
        default="http://localhost:3001/demo/provider",
        description="Base URL of the identity provider endpoints",
    )
    client_id: str = Field(
        default="demo-client-id",
        description="OAuth2 client ID",
    )
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients)",
    )
    scopes: str = Field(
        default="openid email profile",
        description="Space-separated OAuth2 scopes to request",
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds for provider requests",
    )
    storage_prefix: str = Field(
        default="oauth_",
        description="Key prefix for the provider's session slot",
    )


class DemoProviderSettings(BaseSettings):
    """Demo identity provider settings.

    Environment prefix: OAUTHKIT_DEMO__
    Example: OAUTHKIT_DEMO__PORT=3001
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT_DEMO__",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = Field(default=3001, ge=0, le=65535)
    prefix: str = Field(
        default="/demo/provider",
        description="Path prefix the demo provider routes are mounted under",
    )
    code_ttl: float = Field(
        default=600.0,
        gt=0,
        description="Authorization code lifetime in seconds",
    )
    token_ttl: int = Field(
        default=3600,
        gt=0,
        description="Access token lifetime in seconds",
    )
    sweep_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between janitor sweeps of expired codes and tokens",
    )


class ServerSettings(BaseSettings):
    """Client application server settings.

    Environment prefix: OAUTHKIT_SERVER__
    Example: OAUTHKIT_SERVER__PORT=8080
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT_SERVER__",
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = Field(default=5173, ge=0, le=65535)
    access_log: bool = False


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: OAUTHKIT_LOG__
    Example: OAUTHKIT_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class OAuthKitSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: OAUTHKIT__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.oauthkit] section
    3. ./oauthkit.toml (project-level)
    4. ~/.config/oauthkit/config.toml (user-level, overrides project)
    5. $OAUTHKIT_CONFIG_FILE
    6. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTHKIT__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    flow: FlowSettings = Field(default_factory=FlowSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    demo: DemoProviderSettings = Field(default_factory=DemoProviderSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    _SECTIONS: ClassVar[list[tuple[str, str, str]]] = [
        ("Flow", "flow", "FLOW"),
        ("Provider", "provider", "PROVIDER"),
        ("Demo Provider", "demo", "DEMO"),
        ("Server", "server", "SERVER"),
        ("Logging", "log", "LOG"),
    ]
    _SECTION_CLASSES: ClassVar[dict[str, type[BaseSettings]]] = {
        "flow": FlowSettings,
        "provider": ProviderSettings,
        "demo": DemoProviderSettings,
        "server": ServerSettings,
        "log": LogSettings,
    }

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged: dict[str, Any] = dict(data)
        # Precedence per field: explicit kwargs > environment > TOML.
        for _, attr_name, env_prefix in self._SECTIONS:
            explicit = data.get(attr_name)
            if explicit is not None and not isinstance(explicit, dict):
                continue
            from_toml = {
                k: v
                for k, v in toml_config.get(attr_name, {}).items()
                if f"OAUTHKIT_{env_prefix}__{k.upper()}" not in os.environ
            }
            if from_toml or explicit is not None:
                section_cls = self._SECTION_CLASSES[attr_name]
                merged[attr_name] = section_cls(**{**from_toml, **(explicit or {})})
        super().__init__(**merged)

    def _dump_sections(self) -> dict[str, Any]:
        """Dump all sections with sensitive fields excluded."""
        return self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr, _ in self._SECTIONS},
        )

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# oauthkit Configuration", "# Generated by: oauthkit config --toml", ""]
        all_data = self._dump_sections()

        for _, section_name, env_prefix in self._SECTIONS:
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data.get(section_name, {}).items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, section_name))
            lines.extend(
                f'# {rn} = ""  (set OAUTHKIT_{env_prefix}__{rn.upper()} instead)'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# oauthkit Environment Variables",
            "# Generated by: oauthkit config --env",
            "",
        ]
        all_data = self._dump_sections()

        for _, attr_name, env_prefix in self._SECTIONS:
            for field_name, field_value in all_data.get(attr_name, {}).items():
                env_name = f"OAUTHKIT_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                env_name = f"OAUTHKIT_{env_prefix}__{redacted_name.upper()}"
                lines.append(f"# {env_name} is not exported")

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["oauthkit Configuration", "=" * 60, ""]
        all_data = self._dump_sections()

        for display_name, attr_name, _ in self._SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:20} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:20} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> OAuthKitSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return OAuthKitSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> OAuthKitSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
