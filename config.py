"""
Stack configuration loaded from pulumi.Config().

Provides a typed, immutable view of stack settings. All settings are read from
Pulumi config (e.g. Pulumi.<stack>.yaml or pulumi config set). Keys in
_CONFIG_SPEC are required; the server function sizing keys fall back to the
plan defaults when unset. Used by __main__.main() to pick the framework
adapter, select development mode and size the server function.
"""

from dataclasses import dataclass
from typing import Any, Callable

import pulumi

FRAMEWORKS: tuple[str, ...] = ("nuxt", "solid-start")


def _require_bool(config: pulumi.Config, key: str) -> bool:
    raw = config.require(key)
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes")


def _require_str(config: pulumi.Config, key: str) -> str:
    return config.require(key)


def _require_framework(config: pulumi.Config, key: str) -> str:
    framework = config.require(key).strip().lower()
    if framework not in FRAMEWORKS:
        raise pulumi.RunError(
            f"Unsupported {key} {framework!r}; expected one of {', '.join(FRAMEWORKS)}"
        )
    return framework


def _optional_int(config: pulumi.Config, key: str) -> int | None:
    return config.get_int(key)


# (key, parser); parser receives (config, key) and returns value.
_CONFIG_SPEC: list[tuple[str, Callable[[pulumi.Config, str], Any]]] = [
    ("site_name", _require_str),
    ("site_path", _require_str),
    ("framework", _require_framework),
    ("dev", _require_bool),
    ("enable_public_access_block", _require_bool),
    ("server_memory_mb", _optional_int),
    ("server_timeout_s", _optional_int),
]


@dataclass(frozen=True)
class StackConfig:
    """
    Stack configuration from Pulumi config.

    Attributes:
        site_name: Logical name of the site; names resources and keys the
            build metadata cache (required).
        site_path: Directory holding the built app, relative to the Pulumi
            project (required).
        framework: "nuxt" or "solid-start" (required).
        dev: Interactive development mode; deploys placeholders instead of
            scanning the build output (required).
        enable_public_access_block: Whether to enable S3 Block Public Access
            on the assets bucket (required).
        server_memory_mb: Server function memory; plan default if unset.
        server_timeout_s: Server function timeout; plan default if unset.
    """

    site_name: str
    site_path: str
    framework: str
    dev: bool
    enable_public_access_block: bool
    server_memory_mb: int | None = None
    server_timeout_s: int | None = None

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config) -> "StackConfig":
        """
        Build StackConfig from pulumi.Config(). See _CONFIG_SPEC for which keys
        are required.
        """
        kwargs = {key: parser(config, key) for key, parser in _CONFIG_SPEC}
        return cls(**kwargs)
