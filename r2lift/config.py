# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Client configuration.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/r2lift/r2lift.yaml``
    (typically ``~/.config/r2lift/r2lift.yaml``)

``!env VAR_NAME`` tags resolve values from environment variables, after
``.env`` files have been loaded (see ``r2lift.dotenv_loader``)::

    account_id: !env R2_ACCOUNT_ID
    credentials:
      access_key_id: !env R2_ACCESS_KEY_ID
      secret_access_key: !env R2_SECRET_ACCESS_KEY
    multipart:
      part_size: 16777216
      max_concurrent_uploads: 8
"""

from __future__ import annotations

import logging
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from platformdirs import user_config_path

from r2lift.credentials import (
    ChainedCredentialsProvider,
    Credentials,
    CredentialsProvider,
    EnvironmentCredentialsProvider,
    StaticCredentialsProvider,
)
from r2lift.dotenv_loader import load_dotenv_once
from r2lift.errors import R2Error


if TYPE_CHECKING:
    from r2lift.multipart.scheduler import RetryPolicy

logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "r2lift"

#: Service limits on part sizes (the last part may be smaller).
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024
DEFAULT_PART_SIZE = 8 * 1024 * 1024

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config path (``~/.config/r2lift/r2lift.yaml``)."""
    return user_config_path(_APP_NAME) / "r2lift.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(R2Error):
    """Configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
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


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


_MISSING = object()


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    if isinstance(value, _EnvVar):
        resolved: object = os.environ.get(value.var_name)
    else:
        resolved = value

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if isinstance(resolved, coerce) and not isinstance(resolved, bool):
        return resolved
    try:
        return coerce(resolved)
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from exc


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for the object store.

    Attributes:
        endpoint: Base URL, e.g.
            ``https://<account>.r2.cloudflarestorage.com``.
        region: Region used in the credential scope (``auto`` for R2).
        service: Service used in the credential scope.
        timeout: Per-request timeout in seconds.
    """

    endpoint: str
    region: str = "auto"
    service: str = "s3"
    timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid.
        """
        parts = urllib.parse.urlsplit(self.endpoint)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(
                f"Endpoint must be an http(s) URL: {self.endpoint!r}"
            )
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be > 0: {self.timeout}")

    @staticmethod
    def endpoint_for_account(account_id: str) -> str:
        """Return the Cloudflare R2 endpoint for ``account_id``."""
        return f"https://{account_id}.r2.cloudflarestorage.com"


@dataclass(frozen=True)
class MultipartConfig:
    """Multipart upload tuning.

    Out-of-range values are clamped rather than rejected, except a part
    size above the service maximum, which cannot be fixed silently.

    Attributes:
        part_size: Bytes per part, at least 5 MiB.
        max_concurrent_uploads: Parts uploaded in parallel, at least 1.
        retry_failed_parts: Whether failed parts are retried at all.
        max_retry_attempts: Retries per part after the first attempt.
        retry_base_delay: Backoff before retry ``n`` is
            ``retry_base_delay * 2**n`` seconds.
        abort_on_failure: Abort the remote session when the upload fails.
    """

    part_size: int = DEFAULT_PART_SIZE
    max_concurrent_uploads: int = 4
    retry_failed_parts: bool = True
    max_retry_attempts: int = 3
    retry_base_delay: float = 0.5
    abort_on_failure: bool = True

    def __post_init__(self) -> None:
        """Clamp values into range.

        Raises:
            ValueError: If ``part_size`` exceeds the service maximum.
        """
        if self.part_size > MAX_PART_SIZE:
            raise ValueError(
                f"Part size must be <= {MAX_PART_SIZE}: {self.part_size}"
            )
        object.__setattr__(
            self, "part_size", max(self.part_size, MIN_PART_SIZE)
        )
        object.__setattr__(
            self, "max_concurrent_uploads", max(1, self.max_concurrent_uploads)
        )
        object.__setattr__(
            self, "max_retry_attempts", max(0, self.max_retry_attempts)
        )
        object.__setattr__(
            self, "retry_base_delay", max(0.0, self.retry_base_delay)
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        """Per-part retry settings for ``UploadScheduler``."""
        from r2lift.multipart.scheduler import RetryPolicy

        return RetryPolicy(
            max_attempts=self.max_retry_attempts,
            base_delay=self.retry_base_delay,
            enabled=self.retry_failed_parts,
        )


@dataclass(frozen=True)
class Settings:
    """Complete configuration loaded from YAML.

    Attributes:
        client: Connection settings.
        multipart: Multipart upload tuning.
        credentials: Keys from the config file, None to fall back to the
            environment.
    """

    client: ClientConfig
    multipart: MultipartConfig
    credentials: Credentials | None = None

    def credentials_provider(self) -> CredentialsProvider:
        """Provider for the configured keys, else the environment."""
        if self.credentials is not None:
            return StaticCredentialsProvider(self.credentials)
        return ChainedCredentialsProvider([EnvironmentCredentialsProvider()])

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> Settings:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/r2lift/r2lift.yaml`` (XDG).

        Returns:
            Settings instance.

        Raises:
            ConfigError: If the file is missing or required values are absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as exc:
                raise ConfigError(
                    f"Invalid YAML in {config_path}: {exc}"
                ) from exc

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        settings = cls._from_raw(raw)
        logger.info(
            "Config loaded from %s: endpoint=%s, part_size=%d, concurrency=%d",
            config_path,
            settings.client.endpoint,
            settings.multipart.part_size,
            settings.multipart.max_concurrent_uploads,
        )
        return settings

    @classmethod
    def _from_raw(cls, raw: dict) -> Settings:
        """Build settings from a parsed (but unresolved) YAML dict."""
        endpoint = _resolve(raw.get("endpoint"), str)
        if endpoint is None:
            account_id = _resolve(
                raw.get("account_id"), str, required="endpoint or account_id"
            )
            endpoint = ClientConfig.endpoint_for_account(account_id)

        multipart = raw.get("multipart") or {}
        if not isinstance(multipart, dict):
            raise ConfigError("'multipart' must be a YAML mapping")
        raw_credentials = raw.get("credentials")
        if raw_credentials is not None and not isinstance(
            raw_credentials, dict
        ):
            raise ConfigError("'credentials' must be a YAML mapping")

        try:
            client = ClientConfig(
                endpoint=endpoint.rstrip("/"),
                region=_resolve(raw.get("region"), str, default="auto"),
                service=_resolve(raw.get("service"), str, default="s3"),
                timeout=_resolve(raw.get("timeout"), float, default=60.0),
            )
            multipart_config = MultipartConfig(
                part_size=_resolve(
                    multipart.get("part_size"), int, default=DEFAULT_PART_SIZE
                ),
                max_concurrent_uploads=_resolve(
                    multipart.get("max_concurrent_uploads"), int, default=4
                ),
                retry_failed_parts=_resolve(
                    multipart.get("retry_failed_parts"), bool, default=True
                ),
                max_retry_attempts=_resolve(
                    multipart.get("max_retry_attempts"), int, default=3
                ),
                retry_base_delay=_resolve(
                    multipart.get("retry_base_delay"), float, default=0.5
                ),
                abort_on_failure=_resolve(
                    multipart.get("abort_on_failure"), bool, default=True
                ),
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        credentials = None
        if raw_credentials:
            credentials = Credentials(
                access_key_id=_resolve(
                    raw_credentials.get("access_key_id"),
                    str,
                    required="credentials.access_key_id",
                ),
                secret_access_key=_resolve(
                    raw_credentials.get("secret_access_key"),
                    str,
                    required="credentials.secret_access_key",
                ),
            )

        return cls(
            client=client, multipart=multipart_config, credentials=credentials
        )
