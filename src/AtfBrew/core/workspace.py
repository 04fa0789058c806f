"""Ephemeral staging and extraction directories for archive repacking."""

import logging
import os
import shutil

from ..config import WorkspaceConfig
from .errors import FilesystemFailure

logger = logging.getLogger("atf_pipeline.workspace")


class TempWorkspace:
    """Scoped pair of temp directories owned by one pipeline run.

    ``staging_dir`` holds copies of the source archives, ``result_dir``
    holds extracted members and rebuilt archives. Entering the ``with``
    block clears leftovers of an earlier run; both are created lazily and
    removed on exit, success or not.
    """

    def __init__(self, config: WorkspaceConfig):
        self.staging_dir = os.path.abspath(config.temp_dir)
        self.result_dir = os.path.abspath(config.gaf_temp_result_dir)

    def __enter__(self) -> "TempWorkspace":
        self.teardown()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    @staticmethod
    def ensure_dir(path: str) -> str:
        """Create ``path`` if absent."""
        os.makedirs(path, exist_ok=True)
        return path

    def ensure_staging(self) -> str:
        return self.ensure_dir(self.staging_dir)

    def ensure_result(self) -> str:
        return self.ensure_dir(self.result_dir)

    def stage(self, source_path: str) -> str:
        """Copy an archive into the staging directory, overwriting any copy."""
        self.ensure_staging()
        target = os.path.join(self.staging_dir, os.path.basename(source_path))
        try:
            shutil.copyfile(source_path, target)
        except FileNotFoundError as exc:
            raise FilesystemFailure(f"Archive not found: {source_path}") from exc
        logger.debug("Staged %s -> %s", source_path, target)
        return target

    def staged_archives(self, ext: str = ".zip"):
        """Yield staged archive paths in sorted listing order."""
        if not os.path.isdir(self.staging_dir):
            return
        for name in sorted(os.listdir(self.staging_dir)):
            path = os.path.join(self.staging_dir, name)
            if os.path.isfile(path) and name.lower().endswith(ext):
                yield path

    @staticmethod
    def remove(path: str):
        """Remove a file or directory tree; missing paths are ignored."""
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.remove(path)

    def teardown(self):
        """Remove both ephemeral directories."""
        for path in (self.staging_dir, self.result_dir):
            self.remove(path)
        logger.debug("Workspace removed: %s, %s", self.staging_dir, self.result_dir)
