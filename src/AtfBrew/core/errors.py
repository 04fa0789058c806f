"""Error taxonomy for the compression and repackaging pipeline.

Structural errors (`ManifestUnreadable`, `FilesystemFailure`) are raised and
abort the run. Content and tool errors are normally recorded on the stage
result and logged; the run keeps going.
"""


class AtfBrewError(RuntimeError):
    """Base class for all pipeline errors."""

    #: Whether the orchestrator may record this error and continue.
    recoverable = False


class ManifestUnreadable(AtfBrewError):
    """Raised when the manifest file is missing or is not a valid JSON array."""


class FilesystemFailure(AtfBrewError):
    """Raised when a required source path is absent during listing or copy."""


class CompressorToolFailure(AtfBrewError):
    """External compressor wrote to stderr, exited non-zero, or left no output."""

    recoverable = True

    def __init__(self, message: str, source_path: str = "", returncode=None):
        super().__init__(message)
        self.source_path = source_path
        self.returncode = returncode


class ArchiveMemberFormatError(AtfBrewError):
    """An extracted archive member has an unexpected extension."""

    recoverable = True


class EmptyArchiveError(AtfBrewError):
    """An archive yielded zero successfully classified members."""

    recoverable = True


class InvalidPathName(AtfBrewError):
    """A slot path contains characters that are invalid on common file systems."""

    recoverable = True


__all__ = [
    "AtfBrewError",
    "ManifestUnreadable",
    "FilesystemFailure",
    "CompressorToolFailure",
    "ArchiveMemberFormatError",
    "EmptyArchiveError",
    "InvalidPathName",
]
