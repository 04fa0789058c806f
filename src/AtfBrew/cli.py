"""Command-line interface for the ATF pipeline."""

import argparse
import logging
import os
import sys

from .config import Command, PipelineConfig, Platform
from .core import AtfBrewError, setup_logging

logger = logging.getLogger("atf_pipeline")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="AtfBrew",
        description="Compress texture atlases to ATF and repack GAF archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  AtfBrew --platform web --command atf
  AtfBrew -p ios -c all --update-manifest --remove-sources
  AtfBrew -p android -c gaf --target hero
  AtfBrew --config atfbrew.yaml --dry-run
  AtfBrew --generate-config
        """
    )
    parser.add_argument("--platform", "-p", choices=[p.value for p in Platform])
    parser.add_argument("--command", "-c", choices=[c.value for c in Command])
    parser.add_argument("--target", "-t",
                        help="Entry name to process, or 'all'")
    parser.add_argument("--config", help="Path to config YAML")
    parser.add_argument("--work-dir", help="Directory containing the slots folder")
    parser.add_argument("--slot", help="Slot name")
    parser.add_argument("--tool-dir", help="Directory containing png2atf")
    parser.add_argument("--workers", type=int,
                        help="Max concurrent compressor processes (0 = one per task)")
    parser.add_argument("--update-manifest", action="store_true",
                        help="Declare PVR variants in the manifest (ios)")
    parser.add_argument("--remove-sources", action="store_true",
                        help="Keep only compressed assets in the slot (ios/android)")
    parser.add_argument("--check-paths", action="store_true",
                        help="Report slot paths with invalid characters")
    parser.add_argument("--strict", action="store_true",
                        help="Abort on compressor errors instead of logging them")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--generate-config", action="store_true",
                        help="Write default config YAML and exit")
    return parser


def overrides_from_args(args) -> dict:
    """Translate parsed CLI arguments into a nested config override mapping."""
    overrides = {}
    for key in ("platform", "command", "target", "log_level", "log_file"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value
    if args.dry_run:
        overrides["dry_run"] = True

    layout = {}
    if args.work_dir:
        layout["work_dir"] = args.work_dir
    if args.slot:
        layout["slot_name"] = args.slot
    if layout:
        overrides["layout"] = layout

    compression = {}
    if args.tool_dir:
        compression["tool_dir"] = args.tool_dir
    if args.workers is not None:
        compression["max_workers"] = args.workers
    if args.strict:
        compression["strict"] = True
    if compression:
        overrides["compression"] = compression

    post = {}
    if args.update_manifest:
        post["update_ios_manifest"] = True
    if args.remove_sources:
        post["remove_sources"] = True
    if args.check_paths:
        post["check_paths"] = True
    if post:
        overrides["postprocess"] = post
    return overrides


def main(argv=None):
    """Parse CLI arguments, build the config once, and run the pipeline."""
    args = build_parser().parse_args(argv)

    if args.generate_config:
        dest = args.config or "atfbrew.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "atfbrew.yaml")
        PipelineConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        return

    # Surface config warnings before full logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config and not os.path.exists(args.config):
        logger.error("Config file not found: %s", args.config)
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)
    try:
        config = PipelineConfig.load(args.config, overrides_from_args(args))
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        print(f"Error: Invalid config: {e}")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file or None, force=True)

    from .pipeline import AtfPipeline
    pipeline = AtfPipeline(config)
    try:
        pipeline.run()
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)
    except (AtfBrewError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
