"""Configuration loading (.env, environment variables, TOML, AGENTWIRE.md)."""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from agentwire.types.config import (
    AppConfig,
    AuditConfig,
    ContextBudget,
    GatewayConfig,
    LoopConfig,
    RpcConfig,
    ServerContextPolicy,
    TelemetryConfig,
)

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

# Environment variable -> (section, key)
ENV_MAP: dict[str, tuple[str, str]] = {
    "AGENTWIRE_GATEWAY_URL": ("gateway", "url"),
    "AGENTWIRE_API_KEY": ("gateway", "api_key"),
    "AGENTWIRE_PROVIDER": ("gateway", "provider"),
    "AGENTWIRE_MODEL": ("gateway", "model"),
    "AGENTWIRE_TOOL_PROVIDER_PATH": ("rpc", "provider_path"),
    "AGENTWIRE_TELEMETRY_URL": ("telemetry", "url"),
    "AGENTWIRE_TELEMETRY_API_KEY": ("telemetry", "api_key"),
}

_SECTIONS: dict[str, type] = {
    "gateway": GatewayConfig,
    "rpc": RpcConfig,
    "loop": LoopConfig,
    "context": ContextBudget,
    "server_context": ServerContextPolicy,
    "telemetry": TelemetryConfig,
    "audit": AuditConfig,
}

_PATH_FIELDS = {"output_dir", "audit_dir"}
_SET_FIELDS = {"preserve_tools", "truncate_input_tools"}
_TUPLE_FIELDS = {"truncate_input_fields", "exclude_tools"}


def load_env_config() -> dict[str, dict[str, Any]]:
    """Configuration sections taken from ``AGENTWIRE_*`` environment variables."""
    config: dict[str, dict[str, Any]] = {}
    for var, (section, key) in ENV_MAP.items():
        if value := os.environ.get(var):
            config.setdefault(section, {})[key] = value
    if os.environ.get("AGENTWIRE_AUDIT", "").lower() in ("1", "true", "yes"):
        config.setdefault("audit", {})["enabled"] = True
    return config


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}


def load_toml_config(cwd: str | Path | None = None, home: Path | None = None) -> dict[str, Any]:
    """Merge ``~/.agentwire/config.toml`` with the project's ``.agentwire/config.toml``.

    Project values win, section by section.
    """
    home = home or Path.home()
    project_dir = Path(cwd) if cwd else Path.cwd()
    merged: dict[str, Any] = {}
    for path in (home / ".agentwire" / "config.toml", project_dir / ".agentwire" / "config.toml"):
        if not path.is_file():
            continue
        for key, value in _read_toml(path).items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
    return merged


def load_project_context(cwd: str | Path | None = None) -> str | None:
    """Load AGENTWIRE.md from the project directory."""
    base = Path(cwd) if cwd else Path.cwd()
    for name in ("AGENTWIRE.md", ".agentwire/AGENTWIRE.md"):
        md_path = base / name
        if md_path.is_file():
            try:
                return md_path.read_text()
            except OSError as exc:
                logger.warning("Could not read %s: %s", md_path, exc)
    return None


def _coerce(key: str, value: Any) -> Any:
    if key in _PATH_FIELDS and value is not None:
        return Path(value).expanduser()
    if key in _SET_FIELDS:
        return frozenset(value)
    if key in _TUPLE_FIELDS:
        return tuple(value)
    return value


def _build_section(cls: type, *layers: dict[str, Any]) -> Any:
    names = {f.name for f in dataclasses.fields(cls)}
    kwargs: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if key not in names:
                logger.debug("Unknown %s option %r ignored", cls.__name__, key)
                continue
            if value is not None:
                kwargs[key] = _coerce(key, value)
    return cls(**kwargs)


def build_app_config(
    cwd: str | Path | None = None,
    *,
    overrides: dict[str, dict[str, Any]] | None = None,
    home: Path | None = None,
    **top_level: Any,
) -> AppConfig:
    """Resolve an ``AppConfig``: defaults < TOML < environment < ``overrides``.

    ``overrides`` is keyed by section (``gateway``, ``rpc``, ``loop``,
    ``context``, ``server_context``, ``telemetry``, ``audit``); remaining
    keyword arguments set top-level ``AppConfig`` fields.
    """
    resolved_cwd = Path(cwd).resolve() if cwd else Path.cwd()
    toml_config = load_toml_config(resolved_cwd, home=home)
    env_config = load_env_config()
    overrides = overrides or {}

    sections = {
        name: _build_section(
            cls,
            toml_config.get(name) or {},
            env_config.get(name) or {},
            overrides.get(name) or {},
        )
        for name, cls in _SECTIONS.items()
    }

    project_context = top_level.pop("project_context", None) or load_project_context(resolved_cwd)
    system_prompt = top_level.pop("system_prompt", None) or toml_config.get("system_prompt", "")
    if "read_before_write" in toml_config:
        top_level.setdefault("read_before_write", bool(toml_config["read_before_write"]))

    return AppConfig(
        cwd=resolved_cwd,
        system_prompt=system_prompt,
        project_context=project_context,
        gateway=sections["gateway"],
        rpc=sections["rpc"],
        loop=sections["loop"],
        budget=sections["context"],
        server_context=sections["server_context"],
        telemetry=sections["telemetry"],
        audit=sections["audit"],
        **top_level,
    )


def configure_logging(verbose: bool = False) -> None:
    """Route log records through rich. ``AGENTWIRE_LOG_LEVEL`` sets the level."""
    from rich.console import Console
    from rich.logging import RichHandler

    level_name = "DEBUG" if verbose else os.environ.get("AGENTWIRE_LOG_LEVEL", "WARNING")
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(level, logging.WARNING))
