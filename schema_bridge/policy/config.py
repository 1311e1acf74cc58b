from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import ValidationError

from .config_schema import CLIConfig

logger = logging.getLogger(__name__)


def load_cli_config(path: Optional[str]) -> Dict:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        cfg_raw = yaml.safe_load(p.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("could not read config %s: %s", path, exc)
        return {}
    if not isinstance(cfg_raw, dict):
        return {}
    # callers get a plain dict with unset keys dropped
    try:
        validated = CLIConfig(**cfg_raw)
        return validated.model_dump(exclude_none=True)
    except ValidationError as exc:
        # permissive: hand back the raw mapping and let the command reject what it cannot use
        logger.warning("config %s did not validate: %s", path, exc.errors()[0].get("msg"))
        return cfg_raw
