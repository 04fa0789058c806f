"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    AtfBrewError,
    ManifestUnreadable,
    FilesystemFailure,
    CompressorToolFailure,
    ArchiveMemberFormatError,
    EmptyArchiveError,
    InvalidPathName,
)
from .records import CompressionTask, CompressionResult, ArchiveResult, StageResult
from .paths import SlotLayout, compressed_destination
from .manifest import (
    Manifest,
    ManifestEntry,
    load_manifest,
    derive_atlas_tasks,
    derive_archive_list,
)
from .tools import ToolRun, run_tool, resolve_tool
from .workspace import TempWorkspace
from .logging import setup_logging

__all__ = [
    "AtfBrewError", "ManifestUnreadable", "FilesystemFailure",
    "CompressorToolFailure", "ArchiveMemberFormatError", "EmptyArchiveError",
    "InvalidPathName",
    "CompressionTask", "CompressionResult", "ArchiveResult", "StageResult",
    "SlotLayout", "compressed_destination",
    "Manifest", "ManifestEntry", "load_manifest",
    "derive_atlas_tasks", "derive_archive_list",
    "ToolRun", "run_tool", "resolve_tool",
    "TempWorkspace",
    "setup_logging",
]
