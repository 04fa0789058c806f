"""Trailing stages: manifest variant patching, source pruning, path checks."""

import logging
import os
import re
import shutil

from ..config import ATF_MARKER, ZIP_MARKER, Platform, PipelineConfig
from ..core.errors import FilesystemFailure, InvalidPathName
from ..core.manifest import Manifest
from ..core.paths import SlotLayout
from ..core.records import StageResult
from ..core.workspace import TempWorkspace

logger = logging.getLogger("atf_pipeline.postprocess")

_INVALID_PATH_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')


def add_compressed_variant_extensions(manifest: Manifest,
                                      config: PipelineConfig) -> StageResult:
    """Declare the PVR-suffixed ``atf``/``zip`` variants in the manifest.

    Entries of the excluded family are left alone. Markers already present
    are never duplicated, so running this twice is a no-op the second time.
    """
    logger.info("Updating manifest...")
    result = StageResult("update_manifest")
    suffix = config.compression.pvr_files_suffix
    excluded = config.compression.excluded_atlas_name
    for entry in manifest.entries():
        if excluded in entry.name:
            continue
        changed = False
        for marker in (ATF_MARKER, ZIP_MARKER):
            if entry.has(marker):
                changed |= manifest.add_extension(entry.name, marker + suffix)
        if changed:
            result.processed += 1
    manifest.save()
    result.outputs.append(manifest.path)
    return result


def _delete_empty_dirs(root: str) -> int:
    """Remove empty directories below ``root`` (bottom-up); keep ``root``."""
    removed = 0
    for dirpath, _, _ in os.walk(root, topdown=False):
        if dirpath == root:
            continue
        if not os.listdir(dirpath):
            os.rmdir(dirpath)
            removed += 1
    return removed


def prune_sources(config: PipelineConfig) -> StageResult:
    """Keep only compressed assets (and the manifest on iOS) in the slot.

    Allowed files are copied to a holding area, the resolution root is
    deleted, and the holding area is copied back. The holding area is
    removed even when a step fails.
    """
    logger.info("Removing sources...")
    result = StageResult("remove_sources")
    layout = SlotLayout(config.layout)
    slot_path = layout.slot_path
    if not os.path.isdir(slot_path):
        raise FilesystemFailure(f"Slot directory not found: {slot_path}")

    allowed = set(config.postprocess.assets_files_extensions)
    excluded = config.compression.excluded_atlas_name
    keep_manifest = config.platform_enum is Platform.IOS
    manifest_name = config.layout.manifest_file_name
    holding = os.path.abspath(config.workspace.temp_dir)

    def _ignore(directory, names):
        ignored = set()
        for name in names:
            if excluded in name:
                ignored.add(name)
                continue
            if os.path.isdir(os.path.join(directory, name)):
                continue
            if os.path.splitext(name)[1] in allowed:
                continue
            if keep_manifest and name == manifest_name:
                continue
            ignored.add(name)
        return ignored

    TempWorkspace.remove(holding)
    try:
        shutil.copytree(slot_path, holding, ignore=_ignore)
        removed = _delete_empty_dirs(holding)
        logger.debug("Dropped %d empty director(ies) from %s", removed, holding)
        TempWorkspace.remove(layout.resolution_root)
        shutil.copytree(holding, slot_path, dirs_exist_ok=True)
        for _, _, files in os.walk(holding):
            result.processed += len(files)
    finally:
        TempWorkspace.remove(holding)
    logger.info("Kept %d file(s) in %s", result.processed, slot_path)
    return result


def inspect_file_names(config: PipelineConfig) -> StageResult:
    """Report slot paths containing characters invalid on common file systems."""
    result = StageResult("check_paths")
    slot_path = SlotLayout(config.layout).slot_path
    if not os.path.isdir(slot_path):
        raise FilesystemFailure(f"Slot directory not found: {slot_path}")
    for dirpath, dirnames, filenames in os.walk(slot_path):
        dirnames.sort()
        for name in sorted(dirnames + filenames):
            result.processed += 1
            rel = os.path.relpath(os.path.join(dirpath, name), slot_path)
            if _INVALID_PATH_CHARS.search(rel):
                error = InvalidPathName(f"Wrong symbols in path: {os.path.join(dirpath, name)}")
                logger.error(str(error))
                result.issues.append(error)
    return result
