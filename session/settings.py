"""Session-level configuration for models, tool servers and tool calling."""
from __future__ import annotations

import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS: tuple[Path, ...] = (
    Path.home() / ".agent" / "config.toml",
    Path.home() / ".config" / "indubitably" / "config.toml",
)

PROJECT_MCP_CONFIG_FILES: tuple[str, ...] = (
    ".indubitably/mcp.local.json",
    ".mcp.json",
    "mcp.json",
    ".indubitably/mcp.json",
    ".claude/mcp.json",
)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class TransportKind(Enum):
    """Transport used to reach a tool server."""

    STDIO = "stdio"
    WEBSOCKET = "websocket"
    HTTP = "http"


_TRANSPORT_ALIASES: Dict[str, TransportKind] = {
    "stdio": TransportKind.STDIO,
    "local": TransportKind.STDIO,
    "websocket": TransportKind.WEBSOCKET,
    "ws": TransportKind.WEBSOCKET,
    "http": TransportKind.HTTP,
    "streamable-http": TransportKind.HTTP,
    "streamable_http": TransportKind.HTTP,
}


@dataclass(frozen=True)
class ModelSettings:
    """Model defaults from the session file; environment variables win."""

    name: Optional[str] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class MCPServerDescriptor:
    """Configuration for one tool server.

    ``transport`` is ``None`` until :func:`tools.mcp_validation.normalize_descriptor`
    fills in the stdio default used by older configuration files.
    """

    name: str
    transport: Optional[TransportKind] = None
    command: Optional[str] = None
    args: tuple[str, ...] = ()
    env: tuple[tuple[str, str], ...] = ()
    cwd: Optional[Path] = None
    url: Optional[str] = None
    headers: tuple[tuple[str, str], ...] = ()
    auth: Optional[Mapping[str, Any]] = None
    description: Optional[str] = None
    tags: tuple[str, ...] = ()
    auto_approved_tools: tuple[str, ...] = ()
    timeout_seconds: Optional[float] = None
    enabled: bool = True

    @property
    def env_map(self) -> Dict[str, str]:
        return {key: value for key, value in self.env}

    @property
    def header_map(self) -> Dict[str, str]:
        return {key: value for key, value in self.headers}


@dataclass(frozen=True)
class MCPSettings:
    enable: bool = True
    connect_timeout_seconds: float = 30.0
    call_timeout_seconds: float = 120.0
    definitions: tuple[MCPServerDescriptor, ...] = ()


@dataclass(frozen=True)
class ToolCallingSettings:
    mode: str = "auto"
    duplicate_window_seconds: float = 30.0
    history_limit: int = 20


@dataclass(frozen=True)
class SessionSettings:
    model: ModelSettings = ModelSettings()
    mcp: MCPSettings = MCPSettings()
    tool_calling: ToolCallingSettings = ToolCallingSettings()

    def update_with(self, **overrides: Any) -> "SessionSettings":
        """Return new settings with dotted overrides like 'mcp.call_timeout_seconds'."""

        current: MutableMapping[str, Any] = {
            "model": self.model,
            "mcp": self.mcp,
            "tool_calling": self.tool_calling,
        }
        updated = dict(current)
        for dotted, raw_value in overrides.items():
            parts = dotted.split(".")
            if len(parts) != 2:
                raise KeyError(f"Override must be of the form group.field (got '{dotted}')")
            group, leaf = parts
            if group not in current:
                raise KeyError(f"Unknown settings group '{group}'")
            target = updated[group]
            if not hasattr(target, leaf):
                raise KeyError(f"Unknown field '{leaf}' for settings group '{group}'")
            cast_value = _cast_value(getattr(target, leaf), raw_value)
            updated[group] = _replace_dataclass(target, {leaf: cast_value})
        return SessionSettings(**updated)


def load_session_settings(path: Optional[Path] = None) -> SessionSettings:
    """Load session settings from *path* or default search locations."""

    config_data: Mapping[str, Any]
    chosen_path: Optional[Path] = None

    if path is not None:
        chosen_path = path.expanduser().resolve()
        config_data = _loads(chosen_path)
    else:
        env_path = os.getenv("INDUBITABLY_SESSION_CONFIG")
        if env_path:
            candidate = Path(env_path).expanduser().resolve()
            if candidate.exists():
                chosen_path = candidate
                config_data = _loads(candidate)
            else:
                config_data = {}
        else:
            for candidate in DEFAULT_CONFIG_PATHS:
                if candidate.exists():
                    chosen_path = candidate
                    config_data = _loads(candidate)
                    break
            else:
                config_data = {}

    return _settings_from_mapping(config_data, base_dir=chosen_path.parent if chosen_path else None)


def load_mcp_servers_json(path: Path) -> list[MCPServerDescriptor]:
    """Parse a JSON tool-server file.

    Accepts ``{"mcpServers": {name: {...}}}``, ``{"mcpServers": [...]}`` or a
    bare list of server objects that carry their own ``name``.
    """

    resolved = path.expanduser().resolve()
    with resolved.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    entries = _server_entries_from_json(data)
    substituted = substitute_env_vars(entries)
    return [parse_server_entry(entry, resolved.parent) for entry in substituted]


def discover_project_mcp_servers(cwd: Optional[Path] = None) -> list[MCPServerDescriptor]:
    """Return servers from the first project-level JSON file that defines any."""

    root = (cwd or Path.cwd()).resolve()
    for relative in PROJECT_MCP_CONFIG_FILES:
        candidate = root / relative
        if not candidate.exists():
            continue
        try:
            servers = load_mcp_servers_json(candidate)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load MCP config from %s: %s", candidate, exc)
            continue
        if servers:
            logger.debug("Loaded %d MCP server(s) from %s", len(servers), candidate)
            return servers
    return []


def substitute_env_vars(value: Any) -> Any:
    """Expand ``${VAR}`` and ``${VAR:-default}`` inside nested config values."""

    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, Mapping):
        return {key: substitute_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    return value


def parse_server_entry(entry: Mapping[str, Any], base_dir: Optional[Path]) -> MCPServerDescriptor:
    """Build a descriptor from one persisted server mapping."""

    name_raw = entry.get("name")
    if name_raw is None:
        raise ValueError("mcp definition missing required 'name'")
    name = str(name_raw).strip()
    if not name:
        raise ValueError("mcp definition 'name' must contain text")

    transport = _parse_transport(entry.get("transport"), name)

    command_raw = entry.get("command")
    command = str(command_raw).strip() if command_raw else None

    args_value = entry.get("args", ())
    if isinstance(args_value, (list, tuple)):
        args = tuple(str(item) for item in args_value)
    elif isinstance(args_value, str):
        args = tuple(segment for segment in args_value.split() if segment.strip())
    else:
        raise ValueError(f"mcp definition '{name}' args must be a list or string")

    cwd_value = entry.get("cwd")
    cwd_path: Optional[Path]
    if cwd_value is not None:
        cwd_path = Path(str(cwd_value)).expanduser()
        if not cwd_path.is_absolute() and base_dir is not None:
            cwd_path = (base_dir / cwd_path).resolve()
        else:
            cwd_path = cwd_path.resolve()
    else:
        cwd_path = None

    url_raw = entry.get("url")
    url = str(url_raw).strip() if url_raw else None

    auth = entry.get("auth")
    if auth is not None and not isinstance(auth, Mapping):
        raise ValueError(f"mcp definition '{name}' auth must be a table")

    timeout_seconds = _parse_timeout(entry, name)

    description_raw = entry.get("description")
    auto_approved = _coerce_strings(
        entry.get("autoApprovedCommands", entry.get("alwaysAllow", entry.get("auto_approved_tools")))
    )

    return MCPServerDescriptor(
        name=name,
        transport=transport,
        command=command,
        args=args,
        env=_coerce_pairs(entry.get("env"), "env"),
        cwd=cwd_path,
        url=url,
        headers=_coerce_pairs(entry.get("headers"), "headers"),
        auth=dict(auth) if auth else None,
        description=str(description_raw) if description_raw else None,
        tags=_coerce_strings(entry.get("tags")) or (),
        auto_approved_tools=auto_approved or (),
        timeout_seconds=timeout_seconds,
        enabled=bool(entry.get("enabled", True)),
    )


def _loads(path: Path) -> Mapping[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def _server_entries_from_json(data: Any) -> List[Mapping[str, Any]]:
    if isinstance(data, list):
        servers: Any = data
    elif isinstance(data, Mapping):
        servers = data.get("mcpServers", [])
    else:
        raise ValueError("MCP config must be an object or a list")

    if isinstance(servers, Mapping):
        entries: List[Mapping[str, Any]] = []
        for name, body in servers.items():
            if not isinstance(body, Mapping):
                raise ValueError(f"mcpServers entry '{name}' must be an object")
            entries.append({"name": name, **body})
        return entries
    if isinstance(servers, list):
        for item in servers:
            if not isinstance(item, Mapping):
                raise ValueError("mcpServers list entries must be objects")
        return list(servers)
    raise ValueError("mcpServers must be an object or a list")


def _settings_from_mapping(mapping: Mapping[str, Any], *, base_dir: Optional[Path]) -> SessionSettings:
    model = ModelSettings()
    model_section = mapping.get("model")
    if isinstance(model_section, Mapping):
        model = _replace_dataclass(
            model,
            {
                "name": model_section.get("name", model.name),
                "max_tokens": _positive_int(model_section.get("max_tokens"), model.max_tokens, "model.max_tokens"),
            },
        )

    mcp = MCPSettings()
    mcp_section = mapping.get("mcp")
    if isinstance(mcp_section, Mapping):
        definitions_value = _coerce_sequence(mcp_section.get("definitions"))
        definitions: list[MCPServerDescriptor] = []
        if definitions_value:
            for item in definitions_value:
                if not isinstance(item, Mapping):
                    raise ValueError("mcp.definitions entries must be tables")
                definitions.append(parse_server_entry(substitute_env_vars(item), base_dir))

        mcp = _replace_dataclass(
            mcp,
            {
                "enable": bool(mcp_section.get("enable", mcp.enable)),
                "connect_timeout_seconds": _positive_float(
                    mcp_section.get("connect_timeout_seconds"),
                    mcp.connect_timeout_seconds,
                    "mcp.connect_timeout_seconds",
                ),
                "call_timeout_seconds": _positive_float(
                    mcp_section.get("call_timeout_seconds"),
                    mcp.call_timeout_seconds,
                    "mcp.call_timeout_seconds",
                ),
                "definitions": tuple(definitions) or mcp.definitions,
            },
        )

    tool_calling = ToolCallingSettings()
    calling_section = _coerce_mapping(mapping.get("tool_calling"))
    if calling_section:
        mode = str(calling_section.get("mode", tool_calling.mode)).strip().lower()
        if mode not in ("auto", "native", "fallback"):
            raise ValueError(f"tool_calling.mode must be auto, native or fallback (got {mode!r})")
        history_limit = int(calling_section.get("history_limit", tool_calling.history_limit))
        if history_limit <= 0:
            raise ValueError("tool_calling.history_limit must be positive")
        tool_calling = _replace_dataclass(
            tool_calling,
            {
                "mode": mode,
                "duplicate_window_seconds": _positive_float(
                    calling_section.get("duplicate_window_seconds"),
                    tool_calling.duplicate_window_seconds,
                    "tool_calling.duplicate_window_seconds",
                ),
                "history_limit": history_limit,
            },
        )

    return SessionSettings(model=model, mcp=mcp, tool_calling=tool_calling)


def _parse_transport(raw: Any, name: str) -> Optional[TransportKind]:
    if raw is None:
        return None
    if isinstance(raw, TransportKind):
        return raw
    candidate = str(raw).strip().lower()
    if not candidate:
        return None
    try:
        return _TRANSPORT_ALIASES[candidate]
    except KeyError:
        raise ValueError(
            f"mcp definition '{name}' has unsupported transport {raw!r} (expected stdio, websocket or http)"
        ) from None


def _parse_timeout(entry: Mapping[str, Any], name: str) -> Optional[float]:
    if "timeout_seconds" in entry:
        raw = entry.get("timeout_seconds")
        scale = 1.0
    elif "timeout" in entry:
        # JSON configs express timeouts in milliseconds.
        raw = entry.get("timeout")
        scale = 1000.0
    else:
        return None
    if raw is None:
        return None
    try:
        value = float(raw) / scale
    except (TypeError, ValueError) as exc:
        raise ValueError(f"mcp definition '{name}' timeout must be numeric") from exc
    if value <= 0:
        raise ValueError(f"mcp definition '{name}' timeout must be positive")
    return value


def _positive_int(raw: Any, fallback: Optional[int], label: str) -> Optional[int]:
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{label} must be positive")
    return value


def _positive_float(raw: Any, fallback: float, label: str) -> float:
    if raw is None:
        return fallback
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label} must be numeric") from exc
    if value <= 0:
        raise ValueError(f"{label} must be positive")
    return value


def _coerce_sequence(value: Any) -> Optional[Sequence[Any]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return value
    if isinstance(value, str):
        return [value]
    return None


def _coerce_pairs(value: Any, label: str) -> tuple[tuple[str, str], ...]:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        return tuple((str(k), str(v)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        pairs: list[tuple[str, str]] = []
        for item in value:
            if isinstance(item, Mapping):
                for key, val in item.items():
                    pairs.append((str(key), str(val)))
            elif isinstance(item, str):
                if "=" not in item:
                    raise ValueError(f"{label} entries provided as strings must be KEY=VALUE")
                key, _, val = item.partition("=")
                pairs.append((key.strip(), val.strip()))
            else:
                raise ValueError(f"{label} entries must be mappings or KEY=VALUE strings")
        return tuple(pairs)
    raise ValueError(f"{label} must be a mapping or sequence of KEY=VALUE strings")


def _coerce_strings(value: Any) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, Iterable) and not isinstance(value, Mapping):
        items = [str(item) for item in value]
    else:
        raise ValueError("expected a string or iterable of strings")
    cleaned = tuple(str(part).strip() for part in items if str(part).strip())
    return cleaned or ()


def _replace_dataclass(obj: Any, fields: Mapping[str, Any]) -> Any:
    filtered = {k: v for k, v in fields.items() if hasattr(obj, k)}
    return replace(obj, **filtered)


def _coerce_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _cast_value(example: Any, raw: Any) -> Any:
    if example is None:
        return raw
    if isinstance(example, bool):
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in {"true", "1", "yes", "on"}:
                return True
            if lowered in {"false", "0", "no", "off"}:
                return False
        return bool(raw)
    if isinstance(example, int):
        return int(raw)
    if isinstance(example, float):
        return float(raw)
    if isinstance(example, tuple):
        if isinstance(raw, Iterable) and not isinstance(raw, str):
            return tuple(raw)
        return example
    return type(example)(raw) if type(example) is not type(raw) else raw


__all__ = [
    "MCPServerDescriptor",
    "MCPSettings",
    "ModelSettings",
    "PROJECT_MCP_CONFIG_FILES",
    "SessionSettings",
    "ToolCallingSettings",
    "TransportKind",
    "discover_project_mcp_servers",
    "load_mcp_servers_json",
    "load_session_settings",
    "parse_server_entry",
    "substitute_env_vars",
]
