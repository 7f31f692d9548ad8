# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Gateway configuration.

Configuration is loaded once at startup, either from a YAML file with
``!env`` tags resolved from environment variables::

    listen:
      port: 8000
    client:
      access_key_id: !env ACCESSKEYID
      secret_access_key: !env SECRETACCESSKEY
    upstream:
      url: https://s3.example.com
      access_key_id: !env UPSTREAM_ACCESSKEYID
      secret_access_key: !env UPSTREAM_SECRETACCESSKEY
    allowed_buckets: [photos, backups]
    log_level: info

or directly from environment variables (``GatewayConfig.from_env``).
A ``.env`` file is loaded first in both cases.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from dotenv import load_dotenv

from s3gate.forwarder import upstream_host
from s3gate.logging import SecretFilter, parse_level
from s3gate.pipeline import DEFAULT_MAX_HASHED_BODY_BYTES
from s3gate.signing.types import Credential


logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "S3GATE_CONFIG"

_dotenv_loaded = False


class ConfigError(Exception):
    """Base exception for configuration errors."""


def load_dotenv_once(env_path: Path | None = None) -> None:
    """Load a ``.env`` file once (explicit path, else current directory)."""
    global _dotenv_loaded
    if _dotenv_loaded:
        return
    if env_path is not None and env_path.exists():
        load_dotenv(env_path)
        logger.debug("Loaded .env from %s", env_path)
    else:
        load_dotenv()
    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False


# ---------------------------------------------------------------------------
# YAML ``!env`` tags
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T], *, required: str) -> _T: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a config value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value (``_EnvVar``, None, or a literal).
        coerce: Target type (``str``, ``int``, ``float``).
        default: Default when the value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value.
    """
    if isinstance(value, coerce):
        return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        return default

    try:
        return coerce(resolved)
    except ValueError as e:
        name = required or "value"
        raise ConfigError(f"Invalid {name}: {resolved!r}") from e


def _resolve_bucket_list(value: object) -> frozenset[str]:
    """Resolve the allowlist from a YAML list or a comma-separated string."""
    if value is None:
        return frozenset()
    if isinstance(value, list):
        items = [_raw_resolve(item) or "" for item in value]
    else:
        items = (_raw_resolve(value) or "").split(",")
    return frozenset(item.strip() for item in items if item.strip())


# ---------------------------------------------------------------------------
# Gateway configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GatewayConfig:
    """Complete, immutable gateway configuration.

    Attributes:
        verification_credential: Credential clients sign requests with.
        upstream_url: Base URL of the upstream object store.
        upstream_credential: Credential used to re-sign for the upstream.
        allowed_buckets: Bucket names that may be proxied.
        host: Address to listen on.
        port: Port to listen on.
        log_level: Logging level name.
        connect_timeout: Upstream connect timeout in seconds.
        read_timeout: Upstream read timeout in seconds.
        max_hashed_body_bytes: Largest body buffered for payload hashing,
            also the largest aws-chunked chunk accepted.
    """

    verification_credential: Credential
    upstream_url: str
    upstream_credential: Credential
    allowed_buckets: frozenset[str] = field(default_factory=frozenset)
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    max_hashed_body_bytes: int = DEFAULT_MAX_HASHED_BODY_BYTES

    def __post_init__(self) -> None:
        """Validate values and register secrets for log redaction.

        Raises:
            ConfigError: If validation fails.
        """
        try:
            upstream_host(self.upstream_url)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        try:
            parse_level(self.log_level)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ConfigError("Upstream timeouts must be positive")

        SecretFilter.register_secret(self.verification_credential.secret_key)
        SecretFilter.register_secret(self.upstream_credential.secret_key)

    @classmethod
    def from_yaml(cls, config_path: Path) -> GatewayConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config YAML: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )
        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> GatewayConfig:
        """Build config from parsed (but unresolved) YAML dict."""
        listen = raw.get("listen") or {}
        client = raw.get("client") or {}
        upstream = raw.get("upstream") or {}

        return cls(
            verification_credential=Credential(
                _resolve(
                    client.get("access_key_id"),
                    str,
                    required="client.access_key_id",
                ),
                _resolve(
                    client.get("secret_access_key"),
                    str,
                    required="client.secret_access_key",
                ),
            ),
            upstream_url=_resolve(
                upstream.get("url"), str, required="upstream.url"
            ),
            upstream_credential=Credential(
                _resolve(
                    upstream.get("access_key_id"),
                    str,
                    required="upstream.access_key_id",
                ),
                _resolve(
                    upstream.get("secret_access_key"),
                    str,
                    required="upstream.secret_access_key",
                ),
            ),
            allowed_buckets=_resolve_bucket_list(raw.get("allowed_buckets")),
            host=_resolve(listen.get("host"), str, default="0.0.0.0"),
            port=_resolve(listen.get("port"), int, default=8000),
            log_level=_resolve(raw.get("log_level"), str, default="info"),
            connect_timeout=_resolve(
                upstream.get("connect_timeout"), float, default=10.0
            ),
            read_timeout=_resolve(
                upstream.get("read_timeout"), float, default=300.0
            ),
            max_hashed_body_bytes=_resolve(
                raw.get("max_hashed_body_bytes"),
                int,
                default=DEFAULT_MAX_HASHED_BODY_BYTES,
            ),
        )

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None
    ) -> GatewayConfig:
        """Load configuration from environment variables.

        Uses ``ACCESSKEYID``, ``SECRETACCESSKEY``, ``UPSTREAM_URL``,
        ``UPSTREAM_ACCESSKEYID``, ``UPSTREAM_SECRETACCESSKEY``,
        ``ALLOWED_BUCKETS`` (comma-separated), ``LOG_LEVEL``, ``HOST``,
        ``PORT``, ``UPSTREAM_CONNECT_TIMEOUT``, ``UPSTREAM_READ_TIMEOUT``
        and ``MAX_HASHED_BODY_BYTES``.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Raises:
            ConfigError: If a required variable is unset or invalid.
        """
        if environ is None:
            load_dotenv_once()
            environ = os.environ
        env = {k: v for k, v in environ.items() if v}

        return cls._from_raw(
            {
                "listen": {"host": env.get("HOST"), "port": env.get("PORT")},
                "client": {
                    "access_key_id": env.get("ACCESSKEYID"),
                    "secret_access_key": env.get("SECRETACCESSKEY"),
                },
                "upstream": {
                    "url": env.get("UPSTREAM_URL"),
                    "access_key_id": env.get("UPSTREAM_ACCESSKEYID"),
                    "secret_access_key": env.get("UPSTREAM_SECRETACCESSKEY"),
                    "connect_timeout": env.get("UPSTREAM_CONNECT_TIMEOUT"),
                    "read_timeout": env.get("UPSTREAM_READ_TIMEOUT"),
                },
                "allowed_buckets": env.get("ALLOWED_BUCKETS"),
                "log_level": env.get("LOG_LEVEL"),
                "max_hashed_body_bytes": env.get("MAX_HASHED_BODY_BYTES"),
            }
        )
