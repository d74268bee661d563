"""Project discovery and ``.lechat/config.toml`` handling."""

from __future__ import annotations

import json
import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from .models import LeChatConfig

logger = logging.getLogger(__name__)

LECHAT_DIR = ".lechat"
CONFIG_FILE = "config.toml"
STORE_FILE = "store.json"


def find_project_root(start: Path) -> Path | None:
    """Walk up from *start* to the first directory holding ``.lechat/``."""
    start = start.resolve()
    for d in [start, *start.parents]:
        if (d / LECHAT_DIR).is_dir():
            return d
    return None


def init_project(target: Path) -> Path:
    """Create ``.lechat/config.toml`` under *target* and return the directory."""
    if not target.is_dir():
        raise ValueError(f"{target} is not a directory.")
    lechat_dir = target / LECHAT_DIR
    if (lechat_dir / CONFIG_FILE).exists():
        raise FileExistsError(lechat_dir)
    lechat_dir.mkdir(parents=True, exist_ok=True)
    save_config(lechat_dir, LeChatConfig())
    return lechat_dir


def load_config(lechat_dir: Path | None) -> LeChatConfig:
    """Read config.toml, falling back to defaults when missing."""
    if lechat_dir is None:
        return LeChatConfig()
    path = lechat_dir / CONFIG_FILE
    if not path.is_file():
        return LeChatConfig()
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid {path}: {exc}") from exc

    unknown = set(data) - set(LeChatConfig.model_fields)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        data = {k: v for k, v in data.items() if k not in unknown}
    try:
        return LeChatConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid {path}: {exc}") from exc


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    # JSON string escaping is valid TOML basic-string escaping.
    return json.dumps(str(value))


def save_config(lechat_dir: Path, config: LeChatConfig) -> None:
    lines = ["# LeChat assistant configuration", ""]
    for name, value in config.model_dump().items():
        lines.append(f"{name} = {_toml_value(value)}")
    (lechat_dir / CONFIG_FILE).write_text("\n".join(lines) + "\n", encoding="utf-8")


def resolve_route_index_path(project_root: Path, config: LeChatConfig) -> Path:
    path = Path(config.route_index)
    return path if path.is_absolute() else project_root / path
