"""Run external command-line tools and resolve their executables.

A tool run is awaited to completion with stdout/stderr captured; the exit
status is always reported back to the caller, never raised.
"""

import logging
import os
import platform
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger("atf_pipeline.tools")

# NTSTATUS values png2atf dies with on Windows, keyed by unsigned code.
_NTSTATUS_NAMES = {
    0xC0000005: "ACCESS_VIOLATION",
    0xC000001D: "ILLEGAL_INSTRUCTION",
    0xC00000FD: "STACK_OVERFLOW",
    0xC0000135: "DLL_NOT_FOUND",
    0xC0000409: "STACK_BUFFER_OVERRUN",
}

_MAX_LINE_CHARS = 500


def describe_crash(returncode: Optional[int]) -> Optional[str]:
    """Name the signal or NTSTATUS behind ``returncode``; None for normal exits."""
    if returncode is None or returncode >= 0:
        return None
    if sys.platform == "win32":
        code = returncode & 0xFFFFFFFF
        name = _NTSTATUS_NAMES.get(code, "NTSTATUS")
        return f"{name} (0x{code:08X})"
    try:
        name = signal.Signals(-returncode).name
    except ValueError:
        name = "signal"
    return f"{name} (signal {-returncode})"


def forward_output(text: str, tool_label: str, stream_name: str,
                   level: int, max_lines: int = 120) -> None:
    """Replay captured tool output through the logger, keeping the tail."""
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return
    dropped = max(0, len(lines) - max_lines)
    if dropped:
        logger.log(level, "[%s] (%d %s line(s) dropped)", tool_label, dropped, stream_name)
    for line in lines[dropped:]:
        if len(line) > _MAX_LINE_CHARS:
            line = line[:_MAX_LINE_CHARS] + "..."
        logger.log(level, "[%s] %s: %s", tool_label, stream_name, line)


@dataclass
class ToolRun:
    """Completed external process: exit status plus captured streams."""

    cmd: List[str]
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    launch_error: str = ""
    crash: Optional[str] = field(default=None)

    @property
    def ok(self) -> bool:
        return (
            not self.launch_error
            and self.returncode == 0
            and not self.stderr.strip()
        )

    def describe(self) -> str:
        if self.launch_error:
            return self.launch_error
        if self.crash:
            return f"crashed: {self.crash} (exit code {self.returncode})"
        if self.returncode != 0:
            return f"exit code {self.returncode}"
        if self.stderr.strip():
            return "wrote to stderr"
        return "ok"


def run_tool(cmd: List[str], tool_label: str, source_info: str,
             timeout: Optional[float] = None) -> ToolRun:
    """Run ``cmd`` to completion and return its outcome.

    Any stderr output is logged at ERROR level regardless of exit status.
    No retries; ``timeout=None`` waits indefinitely.
    """
    logger.debug("Running %s: %s", tool_label, " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd, capture_output=True, timeout=timeout, text=True,
            encoding="utf-8", errors="replace",
        )
    except FileNotFoundError:
        logger.error("%s tool not found: %s", tool_label, cmd[0])
        return ToolRun(cmd, launch_error=f"tool not found: {cmd[0]}")
    except PermissionError:
        logger.error("%s tool is not executable: %s", tool_label, cmd[0])
        return ToolRun(cmd, launch_error=f"tool is not executable: {cmd[0]}")
    except subprocess.TimeoutExpired as e:
        logger.error("%s timed out after %ss for %s", tool_label, timeout, source_info)
        stderr = e.stderr or ""
        if isinstance(stderr, bytes):
            stderr = stderr.decode(errors="replace")
        forward_output(stderr, tool_label, "stderr", logging.ERROR, max_lines=10)
        return ToolRun(cmd, stderr=stderr, launch_error=f"timed out after {timeout}s")

    run = ToolRun(
        cmd,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        crash=describe_crash(proc.returncode),
    )
    forward_output(run.stdout, tool_label, "stdout", logging.DEBUG, max_lines=200)
    forward_output(run.stderr, tool_label, "stderr", logging.ERROR)
    if run.crash:
        logger.error(
            "%s crashed processing %s: %s (exit code %d)",
            tool_label, source_info, run.crash, proc.returncode,
        )
    elif proc.returncode != 0:
        logger.error(
            "%s failed for %s with exit code %d",
            tool_label, source_info, proc.returncode,
        )
    return run


def resolve_tool(tool_name: str, tool_dir: str = "") -> Optional[str]:
    """Locate ``tool_name``: configured dir, then PATH, then bundled ``bin/``."""
    exe_suffix = ".exe" if platform.system() == "Windows" else ""
    if tool_dir:
        for candidate in (tool_name + exe_suffix, tool_name):
            path = os.path.join(tool_dir, candidate)
            if os.path.isfile(path):
                return path
        logger.warning("Tool '%s' not found in configured directory %s", tool_name, tool_dir)
        return None

    found = shutil.which(tool_name)
    if found:
        return found

    from .. import BIN_DIR
    candidate = BIN_DIR / f"{tool_name}{exe_suffix}"
    if candidate.is_file():
        logger.info("Using bundled tool: %s", candidate)
        return str(candidate)

    logger.warning(
        "Tool '%s' not found. Set compression.tool_dir in config or install it on PATH.",
        tool_name,
    )
    return None
