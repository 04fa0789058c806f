"""Orchestrate the ATF compression and GAF repackaging stages.

`build_stages()` turns platform + command + flags into an ordered list of
stage descriptors; `AtfPipeline.run()` executes them strictly in sequence,
stops on unrecovered errors, and aggregates recovered ones into a
`RunReport`.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import Codec, Command, PipelineConfig, Platform
from .core.manifest import derive_archive_list, derive_atlas_tasks, load_manifest
from .core.records import StageResult
from .phases.archive import ArchiveRepacker
from .phases.atlas import AtlasCompressor
from .phases import postprocess

logger = logging.getLogger("atf_pipeline")


def _get_version() -> str:
    from . import __version__
    return __version__


@dataclass(frozen=True)
class Stage:
    """One pipeline step: consumes the previous stage result, returns its own."""

    name: str
    run: Callable[["AtfPipeline", Optional[StageResult]], StageResult]
    codec: Optional[Codec] = None


def _atlas_stage(codec: Codec) -> Stage:
    return Stage(
        name=f"atf_{codec.value}",
        run=lambda pipeline, _prev: pipeline.compress_atlases(codec),
        codec=codec,
    )


_GAF_STAGE = Stage("gaf", lambda pipeline, _prev: pipeline.repack_archives())
_UPDATE_MANIFEST_STAGE = Stage(
    "update_manifest", lambda pipeline, _prev: pipeline.update_manifest()
)
_REMOVE_SOURCES_STAGE = Stage(
    "remove_sources", lambda pipeline, _prev: pipeline.remove_sources()
)
_CHECK_PATHS_STAGE = Stage("check_paths", lambda pipeline, _prev: pipeline.check_paths())


def build_stages(config: PipelineConfig) -> List[Stage]:
    """Return the ordered stage list for the configured platform and command."""
    command = config.command_enum
    platform = config.platform_enum
    stages: List[Stage] = []
    if command in (Command.ATF, Command.ALL):
        stages.extend(_atlas_stage(codec) for codec in config.codecs)
    if command in (Command.GAF, Command.ALL):
        stages.append(_GAF_STAGE)

    if platform is Platform.IOS and config.postprocess.update_ios_manifest:
        stages.append(_UPDATE_MANIFEST_STAGE)
    if platform in (Platform.IOS, Platform.ANDROID) and config.postprocess.remove_sources:
        stages.append(_REMOVE_SOURCES_STAGE)
    if config.postprocess.check_paths:
        stages.append(_CHECK_PATHS_STAGE)
    return stages


@dataclass
class RunReport:
    """Summary of one pipeline run."""

    stages: List[StageResult] = field(default_factory=list)
    elapsed: float = 0.0
    fatal_error: Optional[Exception] = None

    @property
    def issues(self) -> List[Exception]:
        return [issue for stage in self.stages for issue in stage.issues]

    @property
    def ok(self) -> bool:
        return self.fatal_error is None and not self.issues

    def to_dict(self) -> dict:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "elapsed": round(self.elapsed, 3),
            "fatal_error": None if self.fatal_error is None else str(self.fatal_error),
        }


class AtfPipeline:
    """Run the stage list derived from one immutable configuration."""

    def __init__(self, config: PipelineConfig,
                 compressor: Optional[AtlasCompressor] = None):
        self.config = config
        self.compressor = compressor or AtlasCompressor(config)
        self.last_report: Optional[RunReport] = None

    # ------------------------------------------
    # Stages
    # ------------------------------------------

    def compress_atlases(self, codec: Codec) -> StageResult:
        """Compress every eligible atlas for ``codec`` concurrently."""
        logger.info("Preparing %s atlases...", codec.value.upper())
        result = StageResult(f"atf_{codec.value}")
        tasks = derive_atlas_tasks(load_manifest(self.config), codec, self.config)
        if self.config.dry_run:
            logger.info("[DRY RUN] %s: would compress %d atlas(es)", result.name, len(tasks))
            result.processed = len(tasks)
            result.skipped = True
            return result
        for outcome in self.compressor.compress_all(tasks, desc=f"ATF {codec.value}"):
            if outcome.ok:
                result.processed += 1
                result.outputs.append(outcome.task.destination_path)
            else:
                result.issues.append(outcome.error)
        return result

    def repack_archives(self) -> StageResult:
        """Repack every eligible GAF archive for all platform codecs."""
        archives = derive_archive_list(load_manifest(self.config), self.config)
        if self.config.dry_run:
            logger.info("[DRY RUN] gaf: would repack %d archive(s)", len(archives))
            return StageResult("gaf", processed=len(archives), skipped=True)
        return ArchiveRepacker(self.config, compressor=self.compressor).run(archives)

    def update_manifest(self) -> StageResult:
        if self.config.dry_run:
            logger.info("[DRY RUN] update_manifest: skipped")
            return StageResult("update_manifest", skipped=True)
        return postprocess.add_compressed_variant_extensions(
            load_manifest(self.config), self.config
        )

    def remove_sources(self) -> StageResult:
        if self.config.dry_run:
            logger.info("[DRY RUN] remove_sources: skipped")
            return StageResult("remove_sources", skipped=True)
        return postprocess.prune_sources(self.config)

    def check_paths(self) -> StageResult:
        return postprocess.inspect_file_names(self.config)

    # ------------------------------------------
    # Driver
    # ------------------------------------------

    def run(self) -> RunReport:
        """Run all stages in order and return the aggregated report.

        Unrecovered errors are re-raised after the summary is logged; the
        partial report stays available as ``last_report``.
        """
        stages = build_stages(self.config)
        report = RunReport()
        self.last_report = report
        start_time = time.time()

        logger.info("=" * 60)
        logger.info("ATF ASSET PIPELINE v%s", _get_version())
        logger.info("=" * 60)
        logger.info("Platform: %s", self.config.platform)
        logger.info("Command:  %s", self.config.command)
        logger.info("Target:   %s", self.config.target)
        logger.info("Stages:   %s", ", ".join(s.name for s in stages) or "(none)")
        if self.config.dry_run:
            logger.info("*** DRY RUN MODE ***")

        previous: Optional[StageResult] = None
        try:
            for index, stage in enumerate(stages, 1):
                logger.debug("Stage %d/%d: %s", index, len(stages), stage.name)
                previous = stage.run(self, previous)
                report.stages.append(previous)
        except Exception as exc:
            report.fatal_error = exc
            logger.error("Pipeline aborted: %s", exc)
        finally:
            report.elapsed = time.time() - start_time
            self._log_summary(report)

        if report.fatal_error is not None:
            raise report.fatal_error
        return report

    def _log_summary(self, report: RunReport):
        logger.info("=" * 60)
        for stage in report.stages:
            logger.info(
                "%-16s processed=%d issues=%d%s",
                stage.name, stage.processed, len(stage.issues),
                " (dry run)" if stage.skipped else "",
            )
        issues = report.issues
        if report.fatal_error is not None:
            logger.error("PIPELINE ABORTED: %s", report.fatal_error)
        elif issues:
            logger.warning("Done with %d recovered issue(s):", len(issues))
            for issue in issues:
                logger.warning("  - %s: %s", type(issue).__name__, issue)
        else:
            logger.info("Done!")
        logger.info("Processing time: %.3fs", report.elapsed)
        logger.info("=" * 60)
