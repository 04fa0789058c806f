"""Compress PNG atlases into ATF containers with png2atf.

One external process is launched per atlas and codec. Tool failures are
logged and recorded on the result; they only raise when
``compression.strict`` is enabled.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence

from tqdm import tqdm

from ..config import Codec, PipelineConfig
from ..core.errors import CompressorToolFailure
from ..core.paths import compressed_destination
from ..core.records import CompressionResult, CompressionTask
from ..core.tools import resolve_tool, run_tool

logger = logging.getLogger("atf_pipeline.atlas")


class AtlasCompressor:
    """Invoke png2atf for single images or batches of tasks."""

    tool_label = "png2atf"

    def __init__(self, config: PipelineConfig, tool_path: Optional[str] = None):
        """Initialize compressor; the tool is resolved lazily unless given."""
        self.config = config
        self.cfg = config.compression
        self._tool_path = tool_path
        self._tool_resolved = tool_path is not None

    def _resolve_tool(self) -> Optional[str]:
        """Resolve and cache the compressor path."""
        if not self._tool_resolved:
            self._tool_path = resolve_tool(self.cfg.tool_name, self.cfg.tool_dir)
            self._tool_resolved = True
        return self._tool_path

    def destination_for(self, source_path: str, codec: Codec,
                        is_archive_member: bool = False) -> str:
        return compressed_destination(
            source_path, codec, is_archive_member, self.cfg.pvr_files_suffix
        )

    def build_command(self, tool_path: str, task: CompressionTask) -> List[str]:
        """Return the png2atf argument vector for ``task``."""
        io_args = ["-i", task.source_path, "-o", task.destination_path]
        if task.codec == Codec.RGBA:
            return [tool_path, "-e", "-q", str(self.cfg.quantization)] + io_args
        if task.codec == Codec.PVR:
            return [tool_path, "-c", "p", "-r", "-e"] + io_args
        if task.codec == Codec.ETC:
            return [tool_path, "-c", "e", "-r", "-e"] + io_args
        raise ValueError(f"Unsupported codec: {task.codec!r}")

    def compress(self, source_path: str, codec: Codec = Codec.RGBA,
                 is_archive_member: bool = False) -> CompressionResult:
        """Compress one image; the destination name is derived from the source."""
        task = CompressionTask(
            source_path=source_path,
            destination_path=self.destination_for(source_path, codec, is_archive_member),
            codec=codec,
            is_archive_member=is_archive_member,
        )
        return self.run_task(task)

    def run_task(self, task: CompressionTask) -> CompressionResult:
        """Launch exactly one compressor process for ``task``."""
        source_name = os.path.basename(task.source_path)
        tool_path = self._resolve_tool()
        if not tool_path:
            return CompressionResult(task, error=CompressorToolFailure(
                f"Compressor '{self.cfg.tool_name}' unavailable; "
                f"skipped {source_name}",
                source_path=task.source_path,
            ))

        run = run_tool(self.build_command(tool_path, task), self.tool_label, source_name)
        result = CompressionResult(task, returncode=run.returncode, stderr=run.stderr)
        if not run.ok:
            result.error = CompressorToolFailure(
                f"{self.tool_label} {task.codec.value} failed for {source_name}: "
                f"{run.describe()}",
                source_path=task.source_path,
                returncode=run.returncode,
            )
        elif not os.path.isfile(task.destination_path):
            result.error = CompressorToolFailure(
                f"{self.tool_label} produced no output for {source_name} "
                f"({task.destination_path})",
                source_path=task.source_path,
                returncode=run.returncode,
            )
            logger.error(str(result.error))
        return result

    def compress_all(self, tasks: Sequence[CompressionTask],
                     desc: Optional[str] = None) -> List[CompressionResult]:
        """Run all tasks concurrently and wait for every one to settle.

        Results come back in task order. In strict mode the first failure is
        raised only after all processes have finished.
        """
        if not tasks:
            return []
        workers = self.cfg.max_workers or len(tasks)
        results: List[Optional[CompressionResult]] = [None] * len(tasks)
        with ThreadPoolExecutor(max_workers=min(workers, len(tasks))) as executor:
            futures = {
                executor.submit(self.run_task, task): idx
                for idx, task in enumerate(tasks)
            }
            with tqdm(total=len(futures), desc=desc or "Compressing",
                      disable=None) as pbar:
                for future in as_completed(futures):
                    idx = futures[future]
                    try:
                        results[idx] = future.result()
                    except Exception as exc:
                        logger.error(
                            "Compressor task crashed for %s: %s",
                            tasks[idx].source_path, exc, exc_info=True,
                        )
                        results[idx] = CompressionResult(
                            tasks[idx],
                            error=CompressorToolFailure(
                                str(exc), source_path=tasks[idx].source_path
                            ),
                        )
                    pbar.update(1)

        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning("%d/%d compression task(s) failed", len(failed), len(results))
            if self.cfg.strict:
                raise failed[0].error
        return results
