"""Task and result records passed between pipeline stages."""

from dataclasses import dataclass, field
from typing import List, Optional

from ..config import Codec


@dataclass(frozen=True)
class CompressionTask:
    """One png2atf invocation."""

    source_path: str
    destination_path: str
    codec: Codec
    is_archive_member: bool = False


@dataclass
class CompressionResult:
    """Outcome of one compressor invocation."""

    task: CompressionTask
    returncode: Optional[int] = None
    stderr: str = ""
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ArchiveResult:
    """Outcome of repacking one archive for one codec."""

    archive_path: str
    codec: Codec
    members_added: int = 0
    output_path: Optional[str] = None
    issues: List[Exception] = field(default_factory=list)


@dataclass
class StageResult:
    """Typed result produced by one pipeline stage."""

    name: str
    processed: int = 0
    issues: List[Exception] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "processed": self.processed,
            "issues": [f"{type(e).__name__}: {e}" for e in self.issues],
            "outputs": list(self.outputs),
            "skipped": self.skipped,
        }
