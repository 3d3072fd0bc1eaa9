from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

from .attachments import MAX_IMAGES_PER_MESSAGE
from .error_codes import ErrorCode
from .models import DEFAULT_MODEL_ID, KNOWN_MODELS, ModelInfo, get_model_info
from .project import RuntimePaths

ENV_FILENAME = "env"
ENV_PREFIX = "AGENTDECK_"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    def __init__(self, message: str, *, source: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.code = ErrorCode.CONFIG_INVALID
        self.source = source
        self.key = key


@dataclass(frozen=True)
class ViewerConfig:
    model_id: str = DEFAULT_MODEL_ID
    max_images: int = MAX_IMAGES_PER_MESSAGE
    poll_interval_s: float = 0.25
    events_path: Path | None = None
    responses_path: Path | None = None
    plain_input: bool = False
    color: bool | None = None
    log_level: str = "WARNING"

    @property
    def model(self) -> ModelInfo:
        return get_model_info(self.model_id)

    def with_env(self, env: Mapping[str, str], *, source: str, base_dir: Path | None = None) -> "ViewerConfig":
        """Overlay the AGENTDECK_* keys found in `env`; unknown keys are ignored."""

        cfg = self
        model = _str_env(env.get("AGENTDECK_MODEL"))
        if model is not None:
            if model not in KNOWN_MODELS:
                known = ", ".join(sorted(KNOWN_MODELS))
                raise ConfigError(
                    f"{source}: unknown AGENTDECK_MODEL {model!r} (known: {known})",
                    source=source,
                    key="AGENTDECK_MODEL",
                )
            cfg = replace(cfg, model_id=model)

        max_images = _maybe_int_env(env.get("AGENTDECK_MAX_IMAGES"), key="AGENTDECK_MAX_IMAGES", source=source)
        if max_images is not None:
            if not 1 <= max_images <= MAX_IMAGES_PER_MESSAGE:
                raise ConfigError(
                    f"{source}: AGENTDECK_MAX_IMAGES must be between 1 and {MAX_IMAGES_PER_MESSAGE}",
                    source=source,
                    key="AGENTDECK_MAX_IMAGES",
                )
            cfg = replace(cfg, max_images=max_images)

        poll = _maybe_float_env(env.get("AGENTDECK_POLL_INTERVAL_S"), key="AGENTDECK_POLL_INTERVAL_S", source=source)
        if poll is not None:
            if not poll > 0:
                raise ConfigError(
                    f"{source}: AGENTDECK_POLL_INTERVAL_S must be > 0",
                    source=source,
                    key="AGENTDECK_POLL_INTERVAL_S",
                )
            cfg = replace(cfg, poll_interval_s=poll)

        events = _path_env(env.get("AGENTDECK_EVENTS_PATH"), base_dir=base_dir)
        if events is not None:
            cfg = replace(cfg, events_path=events)
        responses = _path_env(env.get("AGENTDECK_RESPONSES_PATH"), base_dir=base_dir)
        if responses is not None:
            cfg = replace(cfg, responses_path=responses)

        plain = _maybe_bool_env(env.get("AGENTDECK_PLAIN_INPUT"), key="AGENTDECK_PLAIN_INPUT", source=source)
        if plain is not None:
            cfg = replace(cfg, plain_input=plain)
        color = _maybe_bool_env(env.get("AGENTDECK_COLOR"), key="AGENTDECK_COLOR", source=source)
        if color is not None:
            cfg = replace(cfg, color=color)

        level = _str_env(env.get("AGENTDECK_LOG_LEVEL"))
        if level is not None:
            if level.upper() not in _LOG_LEVELS:
                raise ConfigError(
                    f"{source}: invalid AGENTDECK_LOG_LEVEL {level!r}",
                    source=source,
                    key="AGENTDECK_LOG_LEVEL",
                )
            cfg = replace(cfg, log_level=level.upper())
        return cfg


def default_global_env_path() -> Path:
    override = os.environ.get("AGENTDECK_GLOBAL_ENV_PATH")
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / ".agentdeck" / "config" / ENV_FILENAME


def parse_env_text(raw: str, *, source: str = "<env>") -> dict[str, str]:
    env: dict[str, str] = {}
    for line_no, line in enumerate(raw.splitlines(), start=1):
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("export "):
            s = s[len("export ") :].lstrip()
        if "=" not in s:
            raise ConfigError(f"{source}: invalid env line (missing '=') at line {line_no}", source=source)
        key, value = s.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigError(f"{source}: invalid env line (empty key) at line {line_no}", source=source)
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        env[key] = value
    return env


def load_env_file(path: Path) -> dict[str, str]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError(f"Failed to read env file: {path} ({e})", source=str(path)) from e
    return parse_env_text(raw, source=str(path))


def load_viewer_config(
    start_dir: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    global_env_path: Path | None = None,
) -> tuple[ViewerConfig, RuntimePaths | None]:
    """
    Resolve configuration from, in increasing precedence: built-in defaults, the
    global env file, the project env file (if inside a project), the process
    environment. Project paths default the events/responses files.
    """

    environ = os.environ if environ is None else environ
    cfg = ViewerConfig()

    global_path = global_env_path if global_env_path is not None else default_global_env_path()
    cfg = cfg.with_env(load_env_file(global_path), source=str(global_path), base_dir=Path.cwd())

    paths: RuntimePaths | None
    try:
        paths = RuntimePaths.discover(start_dir)
    except FileNotFoundError:
        paths = None

    if paths is not None:
        cfg = replace(cfg, events_path=paths.events_path, responses_path=paths.responses_path)
        cfg = cfg.with_env(load_env_file(paths.env_path), source=str(paths.env_path), base_dir=paths.project_root)

    process_env = {k: v for k, v in environ.items() if k.startswith(ENV_PREFIX)}
    cfg = cfg.with_env(process_env, source="environment", base_dir=Path.cwd())
    logging.getLogger(__name__).debug("resolved config: %s", cfg)
    return cfg, paths


def _str_env(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _path_env(value: str | None, *, base_dir: Path | None) -> Path | None:
    value = _str_env(value)
    if value is None:
        return None
    path = Path(os.path.expanduser(value))
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


def _maybe_bool_env(value: str | None, *, key: str, source: str) -> bool | None:
    if value is None or value == "":
        return None
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"{source}: invalid boolean for {key}: {value!r}", source=source, key=key)


def _maybe_float_env(value: str | None, *, key: str, source: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{source}: invalid float for {key}: {value!r}", source=source, key=key) from e


def _maybe_int_env(value: str | None, *, key: str, source: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{source}: invalid integer for {key}: {value!r}", source=source, key=key) from e
