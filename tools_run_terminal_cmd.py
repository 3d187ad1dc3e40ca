from __future__ import annotations

import json
import os
import shlex
import subprocess
import time
from typing import Any, Dict, Mapping, Optional

from tools.handler import ToolOutput
from tools.schemas import RunTerminalCmdInput


_DEF_SHELL = os.environ.get("SHELL") or "/bin/sh"
_DEF_TIMEOUT = 300.0
_INTERACTIVE_BINS = {"vim", "nano", "top", "htop", "less", "more"}


def run_terminal_cmd_tool_def() -> dict:
    return {
        "name": "run_terminal_cmd",
        "description": (
            "Run a shell command in the foreground and capture its combined stdout/stderr. Provide `command` as a full "
            "shell string; `cwd` changes the working directory and `timeout` bounds the run in seconds (default 300). "
            "The JSON result reports exit code, duration, whether the command timed out, and the output. "
            "Do not start interactive programs or long-running daemons."
        ),
        "input_schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "command": {"type": "string", "description": "The exact shell command to execute."},
                "explanation": {"type": "string", "description": "One sentence on why this command is being run."},
                "cwd": {"type": "string", "description": "Optional working directory for the command."},
                "timeout": {
                    "type": "number",
                    "minimum": 0,
                    "description": "Optional timeout in seconds.",
                },
            },
            "required": ["command"],
        },
    }


def format_run_terminal_cmd(arguments: Mapping[str, Any]) -> str:
    command = str(arguments.get("command", "")).strip()
    cwd = arguments.get("cwd")
    return f"$ {command}" + (f"  (in {cwd})" if cwd else "")


def _run_foreground(command: str, *, cwd: Optional[str], timeout: float) -> Dict[str, Any]:
    env_map = {**os.environ}
    env_map.setdefault("TERM", "xterm-256color")
    env_map.setdefault("PAGER", "cat")

    start = time.time()
    try:
        completed = subprocess.run(
            command,
            shell=True,
            executable=_DEF_SHELL,
            capture_output=True,
            text=True,
            env=env_map,
            cwd=cwd or None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        return {
            "exit_code": -1,
            "duration_seconds": round(time.time() - start, 3),
            "timed_out": True,
            "output": _decode(exc.stdout) + _decode(exc.stderr),
        }
    return {
        "exit_code": completed.returncode,
        "duration_seconds": round(time.time() - start, 3),
        "timed_out": False,
        "output": (completed.stdout or "") + (completed.stderr or ""),
    }


def _decode(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def run_terminal_cmd_impl(params: RunTerminalCmdInput) -> ToolOutput:
    command = params.command.strip()
    if not command:
        return ToolOutput(content="command must contain text", success=False, metadata={"error_type": "validation"})

    # Refuse obviously interactive programs
    try:
        first_bin = shlex.split(command)[0]
    except (ValueError, IndexError):
        first_bin = ""
    base = os.path.basename(first_bin)
    if base in _INTERACTIVE_BINS:
        return ToolOutput(
            content=f"Refusing to run interactive program '{base}'; choose a non-interactive flag.",
            success=False,
            metadata={"error_type": "validation"},
        )

    cwd = (params.cwd or "").strip() or None
    try:
        result = _run_foreground(command, cwd=cwd, timeout=params.timeout or _DEF_TIMEOUT)
    except OSError as exc:
        return ToolOutput(content=f"Command failed to start: {exc}", success=False, metadata={"error_type": "io_error"})
    metadata: Dict[str, Any] = {"exit_code": result["exit_code"]}
    if result["timed_out"]:
        metadata["timed_out"] = True
    return ToolOutput(content=json.dumps(result), success=True, metadata=metadata)
