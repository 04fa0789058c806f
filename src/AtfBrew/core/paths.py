"""Slot, manifest, and asset path helpers."""

import os

from ..config import COMPRESSED_EXT, Codec, LayoutConfig


class SlotLayout:
    """Resolve paths inside one slot.

    Assets live at ``<work_dir>/<work_sub_dir>/<slot>/<res>/<entry>/<lang>/<file>``
    and the manifest at ``<work_dir>/<work_sub_dir>/<slot>/<res>/<manifest>``.
    """

    def __init__(self, layout: LayoutConfig):
        self.layout = layout

    @property
    def slot_path(self) -> str:
        return os.path.join(
            self.layout.work_dir, self.layout.work_sub_dir, self.layout.slot_name
        )

    @property
    def resolution_root(self) -> str:
        return os.path.join(self.slot_path, self.layout.res_path_part)

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.resolution_root, self.layout.manifest_file_name)

    def versioned_name(self, entry_name: str, ext: str) -> str:
        """Return ``<entry><version suffix>.<ext>``."""
        return f"{entry_name}{self.layout.file_version_suffix}.{ext.lstrip('.')}"

    def resolve_file_path(self, entry_name: str, file_name: str) -> str:
        """Return the slot path of ``file_name`` under ``entry_name``."""
        return os.path.join(
            self.resolution_root, entry_name, self.layout.lang_path_part, file_name
        )

    def asset_path(self, entry_name: str, ext: str) -> str:
        return self.resolve_file_path(entry_name, self.versioned_name(entry_name, ext))

    def strip_version_suffix(self, name: str) -> str:
        """Cut ``name`` at the last occurrence of the version suffix.

        Names without the suffix are returned unchanged.
        """
        idx = name.rfind(self.layout.file_version_suffix)
        if idx < 0:
            return name
        return name[:idx]


def compressed_destination(source_path: str, codec, is_archive_member: bool,
                           pvr_suffix: str) -> str:
    """Return the png2atf output path for ``source_path``.

    The base name keeps its stem and gets ``.atf``; PVR outputs get the
    low-quality suffix appended after the extension unless the source is an
    archive member.
    """
    stem, _ = os.path.splitext(source_path)
    suffix = pvr_suffix if (codec == Codec.PVR and not is_archive_member) else ""
    return stem + COMPRESSED_EXT + suffix
