from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from ..domain.errors import INVALID_ARGUMENT, DomainError
from .settings import Settings

TOKEN_ENV_VAR = "REPLICATE_API_TOKEN"
FAL_KEY_ENV_VAR = "FAL_KEY"


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    config_path: Path | None


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = v
    return out


def _detect_default_config_path(project_root: Path) -> Path | None:
    candidates = [project_root / "config.yaml", project_root / "config" / "config.yaml"]
    for p in candidates:
        if p.exists() and p.is_file():
            return p
    return None


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    provider: dict[str, Any] = {}
    token = (environ.get(TOKEN_ENV_VAR) or "").strip()
    if token:
        provider["api_token"] = token
    fal_key = (environ.get(FAL_KEY_ENV_VAR) or "").strip()
    if fal_key:
        provider["fal_key"] = fal_key
    return {"provider": provider} if provider else {}


def load_settings(
    *,
    project_root: Path,
    config_path: Path | None,
    cli_overrides: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> LoadedSettings:
    """YAML file < environment < CLI flags."""

    resolved_path = config_path or _detect_default_config_path(project_root)

    yaml_data: dict[str, Any] = {}
    if resolved_path is not None and resolved_path.exists():
        raw = yaml.safe_load(resolved_path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            yaml_data = raw

    env = os.environ if environ is None else environ
    merged = _deep_merge(_deep_merge(yaml_data, _env_overrides(env)), cli_overrides)
    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        raise DomainError(
            code=INVALID_ARGUMENT,
            message="invalid configuration.",
            details={
                "config_path": str(resolved_path) if resolved_path is not None else None,
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]} for err in e.errors()
                ],
            },
        ) from e
    return LoadedSettings(settings=settings, config_path=resolved_path)
