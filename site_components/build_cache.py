"""
Session-scoped memo of build metadata, keyed by site name.

One ``BuildMetadataCache`` is created per Pulumi program run and passed to
every site component. The first ``get`` for a key asks the metadata source;
later calls return the very same ``BuildMetadata`` object, so re-evaluating a
site never rescans its build output. A per-key lock makes get-or-compute
single-flight when several sites resolve concurrently.

Values are also written to ``store`` in their serialized form. An entry that
is in the store but not yet in memory (e.g. a store shared with an earlier
evaluation) is decoded and reused; one that fails to decode is treated as a
miss. A store that fails to read or write is logged and bypassed; the value
held in memory is still returned.
"""

import json
import os
import threading
from collections.abc import MutableMapping

import pulumi

from site_components.build_output import BuildMetadata, MetadataSource


class BuildMetadataCache:
    """
    Get-or-compute store of ``BuildMetadata`` per site.

    When the source sets ``always_recompute`` (placeholder metadata for
    interactive development), every ``get`` reloads from the source.
    """

    def __init__(
        self,
        source: MetadataSource,
        store: MutableMapping[str, str] | None = None,
    ):
        self.source = source
        self.store: MutableMapping[str, str] = store if store is not None else {}
        self._values: dict[str, BuildMetadata] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def get(
        self,
        key: str,
        output_root: str | os.PathLike,
        assets_path: str,
    ) -> BuildMetadata:
        """
        Return the metadata for key, computing it at most once per session.

        Args:
            key: Site logical name.
            output_root: Build output root passed to the source on a miss.
            assets_path: Assets directory relative to output_root.

        Raises:
            BuildOutputMissing: from the source, on a miss.
        """
        with self._lock_for(key):
            if not self.source.always_recompute:
                cached = self._values.get(key) or self._load_stored(key)
                if cached is not None:
                    self._values[key] = cached
                    return cached

            metadata = self.source.load(output_root, assets_path)
            self._values[key] = metadata
            try:
                self.store[key] = json.dumps(metadata.to_dict())
            except Exception as e:
                pulumi.log.warn(f"Could not store build metadata for {key}: {e}")
            return metadata

    def invalidate(self, key: str) -> None:
        with self._lock_for(key):
            self._values.pop(key, None)
            try:
                self.store.pop(key, None)
            except Exception as e:
                pulumi.log.warn(f"Could not drop stored build metadata for {key}: {e}")

    def _load_stored(self, key: str) -> BuildMetadata | None:
        try:
            raw = self.store.get(key)
        except Exception as e:
            pulumi.log.warn(f"Could not read stored build metadata for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return BuildMetadata.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            # json.JSONDecodeError is a ValueError.
            pulumi.log.warn(f"Ignoring unreadable cached build metadata for {key}: {e}")
            return None
