from __future__ import annotations

import json
from pathlib import Path

from tools.handler import ToolOutput
from tools.schemas import CreateFileInput


_IF_EXISTS = {"error", "overwrite", "skip"}


def create_file_tool_def() -> dict:
    return {
        "name": "create_file",
        "description": (
            "Create a text file, or deliberately overwrite one. Supply `path` and `content` (defaults to empty), and "
            "choose `if_exists`: 'error' aborts when the file exists, 'overwrite' replaces it, 'skip' is a no-op "
            "success. `create_parents` creates missing directories (default true). Use it for new files only; "
            "edit existing files with a dedicated editing tool."
        ),
        "input_schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "path": {"type": "string", "description": "Destination file path."},
                "content": {"type": "string", "description": "File contents (defaults to empty string)."},
                "if_exists": {
                    "type": "string",
                    "enum": sorted(_IF_EXISTS),
                    "description": "Behaviour when the file already exists (default error).",
                },
                "create_parents": {
                    "type": "boolean",
                    "description": "Create parent directories if missing (default true).",
                },
                "encoding": {
                    "type": "string",
                    "description": "Text encoding used when writing (default utf-8).",
                },
            },
            "required": ["path"],
        },
    }


def create_file_impl(params: CreateFileInput) -> ToolOutput:
    path_value = params.path.strip()
    encoding = params.encoding or "utf-8"
    target = Path(path_value)
    existing = target.exists()

    if existing:
        if target.is_dir():
            return ToolOutput(
                content=f"Path is a directory: {path_value}",
                success=False,
                metadata={"error_type": "is_directory"},
            )
        if params.if_exists == "skip":
            return ToolOutput(content=json.dumps({"ok": True, "action": "skip", "path": path_value}), success=True)
        if params.if_exists == "error":
            return ToolOutput(
                content=f"File already exists: {path_value}",
                success=False,
                metadata={"error_type": "exists"},
            )

    parent = target.parent
    if not parent.exists():
        if not params.create_parents:
            return ToolOutput(
                content=f"parent directory missing: {parent}",
                success=False,
                metadata={"error_type": "not_found"},
            )
        parent.mkdir(parents=True, exist_ok=True)

    target.write_text(params.content, encoding=encoding)
    return ToolOutput(
        content=json.dumps({
            "ok": True,
            "action": "overwrite" if existing else "create",
            "path": path_value,
            "encoding": encoding,
            "bytes_written": len(params.content.encode(encoding, errors="replace")),
        }),
        success=True,
    )
