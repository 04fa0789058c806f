"""Repack GAF animation archives with compressed bitmaps.

Each archive goes through: staged -> extracted -> classified -> rebuilt ->
copied to slot. PNG members are replaced by their png2atf output, GAF
members are carried over verbatim, anything else is reported and skipped.
"""

import logging
import os
import shutil
import threading
import zipfile
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ..config import ANIMATION_EXT, ARCHIVE_EXT, BITMAP_EXT, COMPRESSED_EXT, Codec, PipelineConfig
from ..core.errors import ArchiveMemberFormatError, EmptyArchiveError, FilesystemFailure
from ..core.paths import SlotLayout
from ..core.records import ArchiveResult, CompressionTask, StageResult
from ..core.workspace import TempWorkspace
from .atlas import AtlasCompressor

logger = logging.getLogger("atf_pipeline.archive")


class MemberKind(Enum):
    BITMAP = "bitmap"
    ANIMATION_DATA = "animationData"
    OTHER = "other"


@dataclass(frozen=True)
class ArchiveMember:
    """Extracted file: path relative to the extraction dir, plus its kind."""

    relative_name: str
    kind: MemberKind


def classify_member(relative_name: str) -> MemberKind:
    ext = os.path.splitext(relative_name)[1]
    if ext == BITMAP_EXT:
        return MemberKind.BITMAP
    if ext == ANIMATION_EXT:
        return MemberKind.ANIMATION_DATA
    return MemberKind.OTHER


def scan_members(root: str) -> List[ArchiveMember]:
    """List every extracted file under ``root`` in sorted walk order."""
    members = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for fname in sorted(filenames):
            rel = os.path.relpath(os.path.join(dirpath, fname), root)
            rel = rel.replace(os.sep, "/")
            members.append(ArchiveMember(rel, classify_member(rel)))
    return members


def write_archive(entries: List[Tuple[str, bytes]], output_path: str):
    """Serialize ``entries`` to a deflate zip at maximum compression."""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    tmp_path = f"{output_path}.tmp.{os.getpid()}.{threading.get_ident()}"
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED,
                             compresslevel=9) as zf:
            for arcname, data in entries:
                zf.writestr(arcname, data)
        os.replace(tmp_path, output_path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


class ArchiveRepacker:
    """Run compression passes over the GAF archives listed in the manifest."""

    def __init__(self, config: PipelineConfig,
                 compressor: Optional[AtlasCompressor] = None):
        self.config = config
        self.layout = SlotLayout(config.layout)
        self.compressor = compressor or AtlasCompressor(config)

    def run(self, archives: List[str]) -> StageResult:
        """Stage ``archives``, run every platform pass, then drop the workspace."""
        result = StageResult("gaf")
        with TempWorkspace(self.config.workspace) as workspace:
            for archive in archives:
                workspace.stage(archive)
            for codec in self.config.codecs:
                logger.info("Preparing %s GAF zips...", codec.value.upper())
                for archive_result in self.pack_all(workspace, codec):
                    result.issues.extend(archive_result.issues)
                    if archive_result.output_path:
                        result.processed += 1
                result.outputs.extend(self.copy_to_slot(workspace, codec))
        return result

    def pack_all(self, workspace: TempWorkspace, codec: Codec) -> List[ArchiveResult]:
        """Repack every staged archive for ``codec``."""
        results = []
        for staged in workspace.staged_archives(ARCHIVE_EXT):
            entry_name = self.layout.strip_version_suffix(
                os.path.splitext(os.path.basename(staged))[0]
            )
            if not self.config.targets(entry_name):
                continue
            results.append(self.repack(staged, workspace, codec))
        return results

    def _extract(self, archive_path: str, extract_dir: str):
        TempWorkspace.remove(extract_dir)
        os.makedirs(extract_dir)
        try:
            with zipfile.ZipFile(archive_path) as zf:
                zf.extractall(extract_dir)
        except FileNotFoundError as exc:
            raise FilesystemFailure(f"Archive not found: {archive_path}") from exc
        except zipfile.BadZipFile as exc:
            raise FilesystemFailure(f"Cannot extract {archive_path}: {exc}") from exc

    def repack(self, archive_path: str, workspace: TempWorkspace,
               codec: Codec) -> ArchiveResult:
        """Extract, compress bitmap members, and rebuild one archive."""
        archive_file = os.path.basename(archive_path)
        entry_name = self.layout.strip_version_suffix(os.path.splitext(archive_file)[0])
        result = ArchiveResult(archive_path=archive_path, codec=codec)

        extract_dir = os.path.join(workspace.ensure_result(), entry_name)
        self._extract(archive_path, extract_dir)
        members = scan_members(extract_dir)

        tasks = {}
        for member in members:
            if member.kind is MemberKind.BITMAP:
                source = os.path.join(extract_dir, member.relative_name)
                tasks[member.relative_name] = CompressionTask(
                    source_path=source,
                    destination_path=self.compressor.destination_for(source, codec, True),
                    codec=codec,
                    is_archive_member=True,
                )
        compressed = dict(zip(
            tasks,
            self.compressor.compress_all(list(tasks.values()), desc=archive_file),
        ))

        # Builder appends happen here, on one thread, in listing order.
        entries: List[Tuple[str, bytes]] = []
        for member in members:
            member_path = os.path.join(extract_dir, member.relative_name)
            if member.kind is MemberKind.BITMAP:
                outcome = compressed[member.relative_name]
                if not outcome.ok:
                    result.issues.append(outcome.error)
                # Tool warnings are recorded; only a missing output drops the member.
                if not os.path.isfile(outcome.task.destination_path):
                    continue
                arcname = os.path.splitext(member.relative_name)[0] + COMPRESSED_EXT
                with open(outcome.task.destination_path, "rb") as f:
                    entries.append((arcname, f.read()))
                os.remove(member_path)
            elif member.kind is MemberKind.ANIMATION_DATA:
                with open(member_path, "rb") as f:
                    entries.append((member.relative_name, f.read()))
            else:
                error = ArchiveMemberFormatError(
                    f"Unexpected file format in GAF zip [{os.path.basename(member.relative_name)}]"
                )
                logger.error(str(error))
                result.issues.append(error)

        result.members_added = len(entries)
        if not entries:
            error = EmptyArchiveError(f"No files in GAF zip [{entry_name}]")
            logger.error(str(error))
            result.issues.append(error)
            return result

        output_path = os.path.join(workspace.result_dir, archive_file)
        write_archive(entries, output_path)
        TempWorkspace.remove(extract_dir)
        result.output_path = output_path
        logger.debug(
            "Repacked %s (%s): %d member(s) -> %s",
            archive_file, codec.value, len(entries), output_path,
        )
        return result

    def copy_to_slot(self, workspace: TempWorkspace, codec: Codec) -> List[str]:
        """Move rebuilt archives to their slot paths; return the destinations."""
        if not os.path.isdir(workspace.result_dir):
            return []
        suffix = self.config.compression.pvr_files_suffix if codec == Codec.PVR else ""
        moved = []
        for name in sorted(os.listdir(workspace.result_dir)):
            source = os.path.join(workspace.result_dir, name)
            if not os.path.isfile(source) or os.path.splitext(name)[1] != ARCHIVE_EXT:
                continue
            dir_name = self.layout.strip_version_suffix(name)
            destination = self.layout.resolve_file_path(dir_name, name + suffix)
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            TempWorkspace.remove(destination)
            shutil.move(source, destination)
            logger.info("Archive written: %s", destination)
            moved.append(destination)
        return moved
