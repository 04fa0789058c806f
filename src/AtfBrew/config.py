"""Define typed configuration models for the ATF pipeline.

Use `PipelineConfig.load()` once at startup: it merges built-in defaults,
an optional YAML file, and CLI overrides into a single immutable value that
is passed explicitly to every stage.
"""

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger("atf_pipeline.config")


class Platform(Enum):
    """Enumerate target platforms."""

    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class Codec(Enum):
    """Enumerate texture compression variants produced by png2atf."""

    RGBA = "rgba"
    PVR = "pvr"
    ETC = "etc"


class Command(Enum):
    """Enumerate the task groups a run can request."""

    ALL = "all"
    ATF = "atf"
    GAF = "gaf"


# Ordered codecs each platform must produce.
PLATFORM_CODECS: Dict[Platform, List[Codec]] = {
    Platform.WEB: [Codec.RGBA],
    Platform.IOS: [Codec.RGBA, Codec.PVR],
    Platform.ANDROID: [Codec.ETC],
}

# Manifest extension markers.
ATF_MARKER = "atf"
ZIP_MARKER = "zip"

# Archive member extensions.
BITMAP_EXT = ".png"
ANIMATION_EXT = ".gaf"
COMPRESSED_EXT = ".atf"
ARCHIVE_EXT = ".zip"


@dataclass(frozen=True)
class LayoutConfig:
    """Describe where slots, manifests, and assets live on disk."""

    work_dir: str = "."
    work_sub_dir: str = "slots"
    slot_name: str = "default"
    res_path_part: str = "960x640"
    lang_path_part: str = "en_US"
    file_version_suffix: str = "-0001"
    manifest_file_name: str = "manifest.json"


@dataclass(frozen=True)
class CompressionConfig:
    """Store settings for the external png2atf compressor."""

    tool_dir: str = ""
    tool_name: str = "png2atf"
    quantization: int = 30
    pvr_files_suffix: str = "_low"
    excluded_atlas_name: str = "fonts"
    max_workers: int = 0  # 0 = one worker per task
    # Treat tool errors as fatal instead of logging and continuing.
    strict: bool = False


@dataclass(frozen=True)
class WorkspaceConfig:
    """Ephemeral directories used while repacking GAF archives."""

    temp_dir: str = "./tmp"
    gaf_temp_result_dir: str = "./tmp_result_gaf"


@dataclass(frozen=True)
class PostprocessConfig:
    """Trailing stages toggled by flags."""

    update_ios_manifest: bool = False
    remove_sources: bool = False
    check_paths: bool = False
    assets_files_extensions: Tuple[str, ...] = (".atf", ".atf_low", ".zip", ".zip_low")


_SUPPORTED_CONFIG_VERSION = 1


@dataclass(frozen=True)
class PipelineConfig:
    """Master pipeline configuration."""

    config_version: int = 1
    platform: str = "web"
    command: str = "all"
    target: str = "all"
    log_level: str = "INFO"
    log_file: str = ""
    dry_run: bool = False

    layout: LayoutConfig = field(default_factory=LayoutConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    postprocess: PostprocessConfig = field(default_factory=PostprocessConfig)

    @property
    def platform_enum(self) -> Platform:
        return Platform(self.platform)

    @property
    def command_enum(self) -> Command:
        return Command(self.command)

    @property
    def codecs(self) -> List[Codec]:
        """Codecs the configured platform must produce, in order."""
        return list(PLATFORM_CODECS[self.platform_enum])

    def targets(self, name: str) -> bool:
        """Return True when ``name`` passes the requested target filter."""
        return self.target == "all" or self.target == name

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "PipelineConfig":
        """Build a validated config from defaults, a YAML file, and overrides."""
        data: Dict[str, Any] = {}
        if path:
            data = _read_yaml_mapping(path)
        if overrides:
            data = _deep_merge(data, overrides)
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config has config_version=%d, but this build only supports up "
                "to version %d. Some settings may be ignored.",
                yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = _dataclass_from_dict(cls, data)
        try:
            config.validate()
        except ValueError as exc:
            if path:
                raise ValueError(f"{path}: {exc}") from exc
            raise
        return config

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load pipeline configuration from YAML or return defaults."""
        return cls.load(path)

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Return a validated copy with top-level fields replaced."""
        config = dataclasses.replace(self, **changes)
        config.validate()
        return config

    def to_yaml(self, path: str):
        """Write pipeline configuration to a YAML file."""
        data = _to_plain(dataclasses.asdict(self))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_platforms = {p.value for p in Platform}
        if self.platform not in valid_platforms:
            errors.append(
                f"platform must be one of {sorted(valid_platforms)}, "
                f"got '{self.platform}'"
            )
        valid_commands = {c.value for c in Command}
        if self.command not in valid_commands:
            errors.append(
                f"command must be one of {sorted(valid_commands)}, "
                f"got '{self.command}'"
            )
        if not self.target:
            errors.append("target must be 'all' or an entry name")

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )

        # Layout
        for name in ("work_sub_dir", "slot_name", "res_path_part",
                     "lang_path_part", "manifest_file_name"):
            if not getattr(self.layout, name):
                errors.append(f"layout.{name} must not be empty")
        if not self.layout.file_version_suffix:
            errors.append("layout.file_version_suffix must not be empty")

        # Compression
        if not self.compression.tool_name:
            errors.append("compression.tool_name must not be empty")
        if not (0 <= self.compression.quantization <= 180):
            errors.append("compression.quantization must be in [0, 180]")
        if not self.compression.pvr_files_suffix:
            errors.append("compression.pvr_files_suffix must not be empty")
        if not self.compression.excluded_atlas_name:
            errors.append("compression.excluded_atlas_name must not be empty")
        if not (0 <= self.compression.max_workers <= 128):
            errors.append(
                "compression.max_workers must be in [0, 128] (0 = one per task)"
            )

        # Workspace
        if not self.workspace.temp_dir or not self.workspace.gaf_temp_result_dir:
            errors.append("workspace directories must not be empty")
        elif (os.path.abspath(self.workspace.temp_dir)
              == os.path.abspath(self.workspace.gaf_temp_result_dir)):
            errors.append(
                "workspace.temp_dir and workspace.gaf_temp_result_dir must differ"
            )

        # Postprocess
        for ext in self.postprocess.assets_files_extensions:
            if not isinstance(ext, str) or not ext.startswith("."):
                errors.append(
                    "postprocess.assets_files_extensions entries must start "
                    f"with '.', got {ext!r}"
                )
        if self.postprocess.update_ios_manifest and self.platform != Platform.IOS.value:
            logger.warning(
                "postprocess.update_ios_manifest only applies to platform 'ios' "
                "(configured platform: %s).", self.platform,
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _read_yaml_mapping(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        logger.info("Config file '%s' not found. Using defaults.", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(
            f"Failed to parse YAML config '{path}': {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file '{path}' must contain a YAML mapping, "
            f"got {type(data).__name__}"
        )
    return data


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _to_plain(obj):
    if isinstance(obj, dict):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    return obj


def _dataclass_from_dict(cls, data: dict, _path: str = ""):
    """Build a frozen dataclass from ``data`` on top of its defaults."""
    defaults = cls()
    kwargs = {}
    known = {f.name for f in dataclasses.fields(cls)}
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if key not in known:
            logger.warning("Unknown config key ignored: '%s'", full_key)
            continue
        field_val = getattr(defaults, key)
        if dataclasses.is_dataclass(field_val):
            if isinstance(value, dict):
                kwargs[key] = _dataclass_from_dict(type(field_val), value, f"{full_key}.")
            else:
                logger.warning(
                    "Config key '%s' must be a mapping, got %s. Using default value.",
                    full_key, type(value).__name__,
                )
            continue
        # Reject None for fields with non-None defaults
        if value is None and field_val is not None:
            logger.warning(
                "Config key '%s' is null but field default is %s. Using default value.",
                full_key, type(field_val).__name__,
            )
            continue
        expected_type = type(field_val)
        if expected_type is tuple and isinstance(value, list):
            value = tuple(value)
        # Check type compatibility (allow int->float and float->int promotion)
        if (not isinstance(value, expected_type)
                and not (expected_type is float and isinstance(value, int))
                and not (expected_type is int
                         and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                "Config type mismatch for '%s': expected %s, got %s (%r). "
                "Using default value.",
                full_key, expected_type.__name__, type(value).__name__, value,
            )
            continue
        if expected_type is int and isinstance(value, float):
            value = int(value)
        kwargs[key] = value
    return cls(**kwargs)
