"""ATF atlas compression and GAF archive repacking for game slots."""

import logging as _logging
import os as _os
from pathlib import Path as _Path

__version__ = "1.0.0"
_logger = _logging.getLogger("atf_pipeline")

_BIN_ENV = "ATFBREW_BIN_DIR"


def _find_bundled_tools() -> _Path:
    """Return the first existing directory that may hold a bundled png2atf.

    Order: ``$ATFBREW_BIN_DIR``, ``<package>/bin``, ``<repo root>/bin``,
    ``./bin``. The package-local path is returned when none exist.
    """
    pkg_dir = _Path(__file__).resolve().parent
    candidates = [pkg_dir / "bin", pkg_dir.parent.parent / "bin", _Path.cwd() / "bin"]
    env = _os.environ.get(_BIN_ENV)
    if env:
        candidates.insert(0, _Path(env).expanduser())
    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    _logger.debug("No bundled tool directory among %s", [str(c) for c in candidates])
    return pkg_dir / "bin"


BIN_DIR = _find_bundled_tools()

__all__ = ["__version__", "BIN_DIR"]
