"""Manifest I/O and task derivation.

The manifest is a JSON array of ``{"n": <name>, "e": [<extensions>]}``
objects. Each entry names one atlas or archive and lists the file variants
known to exist for it.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..config import ATF_MARKER, ZIP_MARKER, Codec, PipelineConfig
from .errors import ManifestUnreadable
from .paths import SlotLayout, compressed_destination
from .records import CompressionTask

logger = logging.getLogger("atf_pipeline.manifest")


@dataclass(frozen=True)
class ManifestEntry:
    """One logical asset and the extension variants known for it."""

    name: str
    extensions: Tuple[str, ...]

    def has(self, marker: str) -> bool:
        return marker in self.extensions


class Manifest:
    """Parsed manifest plus the raw items it was read from.

    Raw items are kept so unknown keys survive a write-back.
    """

    def __init__(self, path: str, items: list):
        self.path = path
        self.items = items

    @classmethod
    def load(cls, path: str) -> "Manifest":
        """Read and parse the manifest. Raises ManifestUnreadable."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                items = json.load(f)
        except FileNotFoundError as exc:
            raise ManifestUnreadable(f"Manifest not found: {path}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestUnreadable(f"Cannot read manifest {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ManifestUnreadable(f"Manifest is not valid JSON ({path}): {exc}") from exc
        if not isinstance(items, list):
            raise ManifestUnreadable(
                f"Manifest must be a JSON array, got {type(items).__name__} ({path})"
            )
        logger.debug("Loaded manifest %s with %d item(s)", path, len(items))
        return cls(path, items)

    @staticmethod
    def _is_entry(item) -> bool:
        return (
            isinstance(item, dict)
            and isinstance(item.get("n"), str) and bool(item.get("n"))
            and isinstance(item.get("e"), list) and bool(item.get("e"))
        )

    def entries(self) -> List[ManifestEntry]:
        """Return well-formed entries in manifest order."""
        return [
            ManifestEntry(item["n"], tuple(item["e"]))
            for item in self.items
            if self._is_entry(item)
        ]

    def add_extension(self, name: str, extension: str) -> bool:
        """Append ``extension`` to every entry named ``name`` that lacks it."""
        changed = False
        for item in self.items:
            if self._is_entry(item) and item["n"] == name and extension not in item["e"]:
                item["e"].append(extension)
                changed = True
        return changed

    def save(self, path: Optional[str] = None):
        """Write the manifest back as pretty-printed JSON."""
        path = path or self.path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.items, f, indent=4)
                f.write("\n")
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
        logger.info("Manifest saved: %s", path)


def load_manifest(config: PipelineConfig) -> Manifest:
    """Load the manifest of the configured slot."""
    return Manifest.load(SlotLayout(config.layout).manifest_path)


def is_atlas_eligible(entry: ManifestEntry, codec: Codec, excluded: str) -> bool:
    """Atlases need an ATF marker; PVR/ETC never touch the excluded family."""
    if not entry.has(ATF_MARKER):
        return False
    return codec == Codec.RGBA or excluded not in entry.name


def derive_atlas_tasks(manifest: Manifest, codec: Codec, config: PipelineConfig,
                       target: Optional[str] = None) -> List[CompressionTask]:
    """Return one compression task per eligible atlas entry."""
    layout = SlotLayout(config.layout)
    target = target or config.target
    excluded = config.compression.excluded_atlas_name
    tasks = []
    for entry in manifest.entries():
        if not is_atlas_eligible(entry, codec, excluded):
            continue
        if target != "all" and entry.name != target:
            continue
        source = layout.asset_path(entry.name, "png")
        tasks.append(CompressionTask(
            source_path=source,
            destination_path=compressed_destination(
                source, codec, False, config.compression.pvr_files_suffix
            ),
            codec=codec,
        ))
    logger.debug("Derived %d %s atlas task(s)", len(tasks), codec.value)
    return tasks


def derive_archive_list(manifest: Manifest, config: PipelineConfig,
                        target: Optional[str] = None) -> List[str]:
    """Return slot paths of every archive entry passing the target filter."""
    layout = SlotLayout(config.layout)
    target = target or config.target
    archives = [
        layout.asset_path(entry.name, ZIP_MARKER)
        for entry in manifest.entries()
        if entry.has(ZIP_MARKER) and (target == "all" or entry.name == target)
    ]
    logger.debug("Derived %d archive(s)", len(archives))
    return archives
