"""Configuration loading from environment variables, settings.json and mnemo.toml."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from mnemo.memory.context import DEFAULT_BASE_PROMPT

logger = logging.getLogger(__name__)

_DEFAULT_DATA_DIR = Path.home() / ".mnemo"
_CONFIG_FILENAME = "mnemo.toml"
SETTINGS_FILENAME = "settings.json"


@dataclass
class EngineConfig:
    """Configuration for the LLM engine."""

    name: str = "anthropic_api"
    timeout: int = 120


@dataclass
class GenerationConfig:
    """Sampling parameters sent with every request."""

    model: str = "claude-sonnet-4-5-20250929"
    temperature: float = 1.0
    top_p: float | None = None
    top_k: int = 40
    max_output_tokens: int = 4096


@dataclass
class MemoryConfig:
    enabled: bool = True
    limit: int = 5


@dataclass
class InstructionsConfig:
    """Custom instructions folded into the system prompt."""

    base_prompt: str = DEFAULT_BASE_PROMPT
    user_context: str = ""
    response_style: str = ""


@dataclass
class ProfileConfig:
    user_name: str = "user"


@dataclass
class MnemoConfig:
    """Top-level mnemo configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    instructions: InstructionsConfig = field(default_factory=InstructionsConfig)
    profile: ProfileConfig = field(default_factory=ProfileConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _optional_float(value) -> float | None:
    return None if value is None else float(value)


def _read_settings(data_dir: Path) -> dict:
    path = data_dir / SETTINGS_FILENAME
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(config_path: Path | None = None) -> MnemoConfig:
    """Load configuration from environment variables, saved settings and mnemo.toml.

    Priority: environment variables > settings.json > mnemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.mnemo/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    data_dir = Path(
        os.getenv("MNEMO_DATA_DIR", file_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
    ).expanduser()

    # Settings saved at runtime sit on top of the TOML file.
    saved = _read_settings(data_dir)
    engine_data = file_data.get("engine", {})
    generation_data = {**file_data.get("generation", {}), **saved.get("generation", {})}
    memory_data = file_data.get("memory", {})
    instructions_data = {**file_data.get("instructions", {}), **saved.get("instructions", {})}
    profile_data = {**file_data.get("profile", {}), **saved.get("profile", {})}

    defaults = GenerationConfig()
    return MnemoConfig(
        engine=EngineConfig(
            name=engine_data.get("name", "anthropic_api"),
            timeout=int(os.getenv("MNEMO_TIMEOUT", engine_data.get("timeout", 120))),
        ),
        generation=GenerationConfig(
            model=os.getenv("MNEMO_MODEL", generation_data.get("model", defaults.model)),
            temperature=float(
                os.getenv("MNEMO_TEMPERATURE", generation_data.get("temperature", defaults.temperature))
            ),
            top_p=_optional_float(generation_data.get("top_p")),
            top_k=int(generation_data.get("top_k", defaults.top_k)),
            max_output_tokens=int(
                os.getenv(
                    "MNEMO_MAX_TOKENS",
                    generation_data.get("max_output_tokens", defaults.max_output_tokens),
                )
            ),
        ),
        memory=MemoryConfig(
            enabled=_env_bool("MNEMO_MEMORY_ENABLED", bool(memory_data.get("enabled", True))),
            limit=int(os.getenv("MNEMO_MEMORY_LIMIT", memory_data.get("limit", 5))),
        ),
        instructions=InstructionsConfig(
            base_prompt=instructions_data.get("base_prompt", DEFAULT_BASE_PROMPT),
            user_context=instructions_data.get("user_context", ""),
            response_style=instructions_data.get("response_style", ""),
        ),
        profile=ProfileConfig(user_name=profile_data.get("user_name", "user")),
        data_dir=data_dir,
        log_level=os.getenv("MNEMO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )


def save_settings(config: MnemoConfig) -> Path:
    """Persist the user-editable settings to data_dir/settings.json."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    path = config.data_dir / SETTINGS_FILENAME
    data = {
        "generation": asdict(config.generation),
        "instructions": asdict(config.instructions),
        "profile": asdict(config.profile),
    }
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


# ── User-editable settings ───────────────────────────────────


def _text(value) -> str:
    if value is None or isinstance(value, (dict, list)):
        raise TypeError(f"expected text, got {type(value).__name__}")
    return str(value)


def _top_p(value) -> float | None:
    if isinstance(value, str) and value.strip().lower() in ("", "none", "off"):
        return None
    return _optional_float(value)


# key -> (config section, attribute, parser)
EDITABLE_SETTINGS = {
    "model": ("generation", "model", _text),
    "temperature": ("generation", "temperature", float),
    "top_p": ("generation", "top_p", _top_p),
    "top_k": ("generation", "top_k", int),
    "max_tokens": ("generation", "max_output_tokens", int),
    "user_name": ("profile", "user_name", _text),
    "user_context": ("instructions", "user_context", _text),
    "response_style": ("instructions", "response_style", _text),
}


def parse_setting(key: str, value):
    """Convert ``value`` for the editable setting ``key``; raises ValueError."""
    if key not in EDITABLE_SETTINGS:
        raise ValueError(f"Unknown setting: {key} (one of {', '.join(EDITABLE_SETTINGS)})")
    parser = EDITABLE_SETTINGS[key][2]
    try:
        return parser(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {key}: {value!r}") from e


def apply_settings(config: MnemoConfig, updates: dict) -> None:
    """Set already-parsed values from ``parse_setting`` on ``config``."""
    for key, value in updates.items():
        section, attr, _ = EDITABLE_SETTINGS[key]
        setattr(getattr(config, section), attr, value)
