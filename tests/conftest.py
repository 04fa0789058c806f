"""Shared test fixtures and slot builders."""

import json
import os
import shutil
import tempfile
import zipfile

import pytest

from AtfBrew.config import PipelineConfig
from AtfBrew.core.tools import ToolRun

FAKE_TOOL = "/fake/png2atf"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def make_config(root, **overrides) -> PipelineConfig:
    """Return a config whose slot and workspace live under ``root``."""
    data = {
        "layout": {"work_dir": root},
        "workspace": {
            "temp_dir": os.path.join(root, "tmp"),
            "gaf_temp_result_dir": os.path.join(root, "tmp_result_gaf"),
        },
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return PipelineConfig.load(overrides=data)


def entry_dir(config: PipelineConfig, name: str) -> str:
    layout = config.layout
    return os.path.join(
        layout.work_dir, layout.work_sub_dir, layout.slot_name,
        layout.res_path_part, name, layout.lang_path_part,
    )


def write_manifest(config: PipelineConfig, items) -> str:
    layout = config.layout
    path = os.path.join(
        layout.work_dir, layout.work_sub_dir, layout.slot_name,
        layout.res_path_part, layout.manifest_file_name,
    )
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(items, f)
    return path


def write_atlas(config: PipelineConfig, name: str) -> str:
    directory = entry_dir(config, name)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{name}{config.layout.file_version_suffix}.png")
    with open(path, "wb") as f:
        f.write(PNG_BYTES)
    return path


def write_archive(config: PipelineConfig, name: str, members: dict) -> str:
    """Create ``<name><suffix>.zip`` with ``members`` under a top-level folder."""
    directory = entry_dir(config, name)
    os.makedirs(directory, exist_ok=True)
    versioned = f"{name}{config.layout.file_version_suffix}"
    path = os.path.join(directory, f"{versioned}.zip")
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(f"{versioned}/{member}", data)
    return path


def fake_run_tool(cmd, tool_label, source_info, timeout=None):  # noqa: ARG001
    """Stand-in for png2atf: writes a small marker file to the -o path."""
    src = cmd[cmd.index("-i") + 1]
    out = cmd[cmd.index("-o") + 1]
    with open(out, "wb") as f:
        f.write(b"ATF:" + os.path.basename(src).encode())
    return ToolRun(list(cmd), returncode=0)


def failing_run_tool(cmd, tool_label, source_info, timeout=None):  # noqa: ARG001
    """Stand-in for png2atf that exits non-zero without output."""
    return ToolRun(list(cmd), returncode=1, stderr="Error: cannot read input")


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return PipelineConfig()
