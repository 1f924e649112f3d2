"""
Build output scanning: which top-level paths of a framework build are static.

The scanner reads the immediate children of the build's public assets
directory and turns each one into a CDN path pattern (``_helpers``). The
result, ``BuildMetadata``, is what the plan compiler consumes. Scanning is
never recursive: a nested static tree is served by one wildcard behavior per
top-level directory.

Interactive development swaps the scan for a fixed placeholder so a stack
can be brought up without a production build. The choice is made once per
session by ``select_metadata_source`` and handed to the cache as a
``MetadataSource``.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import pulumi

from site_components._helpers import static_route_pattern

# Nitro-based frameworks (Nuxt, SolidStart) emit their public files here.
NITRO_ASSETS_PATH: str = os.path.join(".output", "public")


class BuildOutputMissing(Exception):
    """The build output root or its assets directory does not exist."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Build output not found at {path}. "
            "Run the framework build before deploying."
        )


@dataclass(frozen=True)
class BuildMetadata:
    """
    What the scanner learned about a build output.

    Attributes:
        assets_path: Directory, relative to the output root, synced to the
            assets bucket.
        static_routes: One CDN pattern per top-level entry of assets_path,
            in scan order.
    """

    assets_path: str
    static_routes: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "assetsPath": self.assets_path,
            "staticRoutes": list(self.static_routes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildMetadata":
        """
        Rebuild metadata from its serialized form.

        Raises ValueError when the shape does not match ``to_dict``.
        """
        assets_path = data["assetsPath"]
        routes = data["staticRoutes"]
        if not isinstance(assets_path, str) or not isinstance(routes, list):
            raise ValueError(f"Malformed build metadata: {data!r}")
        if not all(isinstance(route, str) for route in routes):
            raise ValueError(f"Malformed static routes: {routes!r}")
        return cls(assets_path=assets_path, static_routes=tuple(routes))


PLACEHOLDER_METADATA = BuildMetadata(
    assets_path="placeholder",
    static_routes=("_build/*", "_server/*", "assets/*", "favicon.ico"),
)


def scan(
    output_root: str | os.PathLike,
    assets_path: str = NITRO_ASSETS_PATH,
) -> BuildMetadata:
    """
    Scan a build output and derive its static route patterns.

    Args:
        output_root: Directory the framework build ran in (contains
            ``.output/`` for Nitro frameworks).
        assets_path: Assets directory relative to output_root.

    Raises:
        BuildOutputMissing: output_root or the assets directory is absent.
    """
    root = Path(output_root)
    assets_dir = root / assets_path
    if not assets_dir.is_dir():
        raise BuildOutputMissing(assets_dir if root.is_dir() else root)

    # Files first, then directories, each by name: the same build always
    # yields the same behavior order.
    with os.scandir(assets_dir) as entries:
        routes = tuple(
            static_route_pattern(entry.name, entry.is_dir())
            for entry in sorted(entries, key=lambda entry: (entry.is_dir(), entry.name))
        )

    pulumi.log.debug(f"Found {len(routes)} static routes in {assets_dir}")
    return BuildMetadata(assets_path=assets_path, static_routes=routes)


class MetadataSource(Protocol):
    """Where build metadata comes from for a deploy session."""

    # True when cached values must never be reused.
    always_recompute: bool

    def load(self, output_root: str | os.PathLike, assets_path: str) -> BuildMetadata:
        ...


class ScannedMetadataSource:
    """Reads the real build output. Results are safe to cache for a session."""

    always_recompute = False

    def load(self, output_root: str | os.PathLike, assets_path: str) -> BuildMetadata:
        return scan(output_root, assets_path)


class PlaceholderMetadataSource:
    """Interactive development: a fixed route set, no filesystem access."""

    always_recompute = True

    def load(self, output_root: str | os.PathLike, assets_path: str) -> BuildMetadata:
        return PLACEHOLDER_METADATA


def select_metadata_source(dev: bool) -> MetadataSource:
    return PlaceholderMetadataSource() if dev else ScannedMetadataSource()
