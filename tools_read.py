from __future__ import annotations

import json
import os
from typing import Optional

from tools.handler import ToolOutput
from tools.schemas import ReadFileInput


def read_file_tool_def() -> dict:
    return {
        "name": "read_file",
        "description": (
            "Read a text file from the workspace. Provide `path` (absolute or relative) and optionally `offset` + `limit` "
            "to return a window of lines instead of the whole file; `encoding` and `errors` control decoding. The JSON "
            "response includes the content, path and encoding. Do not use this on directories or binary files."
        ),
        "input_schema": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Relative or absolute path to a file.",
                },
                "encoding": {
                    "type": "string",
                    "description": "Text encoding (default utf-8).",
                    "default": "utf-8",
                },
                "errors": {
                    "type": "string",
                    "description": "Decoding error policy: strict|ignore|replace (default replace).",
                    "default": "replace",
                },
                "offset": {
                    "type": "integer",
                    "description": "1-based line start (default 1).",
                    "minimum": 1,
                },
                "limit": {
                    "type": "integer",
                    "description": "Number of lines to read from offset.",
                    "minimum": 1,
                },
            },
            "required": ["path"],
        },
    }


def _read_lines_range(path: str, offset: int, limit: Optional[int], encoding: str, errors: str) -> str:
    # Stream and slice by line to avoid loading the full file
    out_lines = []
    remaining = limit
    with open(path, "r", encoding=encoding, errors=errors) as f:
        for idx, line in enumerate(f, start=1):
            if idx < offset:
                continue
            out_lines.append(line.rstrip("\n"))
            if remaining is not None:
                remaining -= 1
                if remaining <= 0:
                    break
    return "\n".join(out_lines)


def read_file_impl(params: ReadFileInput) -> ToolOutput:
    path = params.path
    encoding = params.encoding or "utf-8"
    errors = params.errors or "replace"
    try:
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        if os.path.isdir(path):
            raise IsADirectoryError(path)

        if params.offset is not None or params.limit is not None:
            content = _read_lines_range(path, params.offset or 1, params.limit, encoding, errors)
        else:
            with open(path, "rb") as f:
                content = f.read().decode(encoding, errors=errors)
    except FileNotFoundError as exc:
        return ToolOutput(content=f"File not found: {exc}", success=False, metadata={"error_type": "not_found"})
    except IsADirectoryError as exc:
        return ToolOutput(content=f"Path is a directory: {exc}", success=False, metadata={"error_type": "is_directory"})
    except (OSError, LookupError) as exc:
        return ToolOutput(content=f"Read failed: {exc}", success=False, metadata={"error_type": "io_error"})

    return ToolOutput(
        content=json.dumps({"content": content, "path": path, "encoding": encoding}),
        success=True,
    )
