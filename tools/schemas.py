"""Pydantic schemas for validated tool inputs."""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Type

from pydantic import BaseModel, Field, ValidationError, field_validator


class ToolSchema(BaseModel):
    """Base class for all tool schemas with strict validation."""

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ReadFileInput(ToolSchema):
    path: str = Field(..., min_length=1, description="Relative or absolute path to a file")
    encoding: Optional[str] = Field("utf-8", description="Text encoding to use")
    errors: Optional[str] = Field("replace", description="Decoding error policy")
    offset: Optional[int] = Field(None, ge=1, description="1-based line offset")
    limit: Optional[int] = Field(None, gt=0, description="Number of lines to read")


class RunTerminalCmdInput(ToolSchema):
    command: str = Field(..., min_length=1)
    explanation: Optional[str] = None
    cwd: Optional[str] = None
    timeout: Optional[float] = Field(None, gt=0)

    @field_validator("command")
    @classmethod
    def validate_command(cls, value: str) -> str:
        dangerous = ("rm -rf /", "dd if=", ":(){ :|:& };:")
        if any(pattern in value for pattern in dangerous):
            raise ValueError("command contains dangerous patterns")
        return value


class CreateFileInput(ToolSchema):
    path: str = Field(..., min_length=1)
    content: str = ""
    if_exists: str = Field("error")
    create_parents: bool = True
    encoding: str = Field("utf-8")

    @field_validator("if_exists")
    @classmethod
    def validate_policy(cls, value: str) -> str:
        policy = value.lower()
        if policy not in {"error", "overwrite", "skip"}:
            raise ValueError("if_exists must be one of error, overwrite, skip")
        return policy


_TOOL_SCHEMAS: Dict[str, Type[ToolSchema]] = {
    "read_file": ReadFileInput,
    "run_terminal_cmd": RunTerminalCmdInput,
    "create_file": CreateFileInput,
}


def parse_tool_input(tool_name: str, raw_input: Mapping[str, Any]) -> ToolSchema | Dict[str, Any]:
    """Parse and validate raw input into a Pydantic model instance.

    Tools without a registered schema get their raw mapping back unchanged.
    """
    schema = _TOOL_SCHEMAS.get(tool_name)
    if schema is None:
        return dict(raw_input)
    try:
        model = schema(**raw_input)
    except ValidationError as exc:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ())) or "input"
            messages.append(f"{loc}: {err.get('msg', 'invalid value')}")
        raise ValueError("; ".join(messages)) from None
    return model


def validate_tool_input(tool_name: str, raw_input: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the validated arguments as a plain dict."""
    model = parse_tool_input(tool_name, raw_input)
    if isinstance(model, dict):
        return dict(model)
    return model.dump()


def schema_validator(tool_name: str) -> Optional[Callable[[Mapping[str, Any]], Optional[str]]]:
    """Return a registry validator for *tool_name*, or ``None`` if it has no schema."""

    if tool_name not in _TOOL_SCHEMAS:
        return None

    def _validate(arguments: Mapping[str, Any]) -> Optional[str]:
        try:
            parse_tool_input(tool_name, arguments)
        except ValueError as exc:
            return f"Invalid arguments for {tool_name}: {exc}"
        return None

    return _validate


__all__ = [
    "ToolSchema",
    "ReadFileInput",
    "RunTerminalCmdInput",
    "CreateFileInput",
    "parse_tool_input",
    "schema_validator",
    "validate_tool_input",
]
