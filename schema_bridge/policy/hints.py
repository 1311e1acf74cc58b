from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)


def load_schema_hints(path: Optional[str]) -> Dict:
    """Read diff hints (``renames`` and ``default_schema``) from a YAML file.

    Rename keys and values are stringified so that YAML scalars like ``1.5`` cannot sneak in as floats.
    """
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        content = yaml.safe_load(p.read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("could not read hints %s: %s", path, exc)
        return {}
    if not isinstance(content, dict):
        return {}
    renames = content.get("renames") or {}
    if not isinstance(renames, dict):
        logger.warning("hints %s: renames must be a mapping, ignoring it", path)
        renames = {}
    content["renames"] = {str(k): str(v) for k, v in renames.items()}
    return content
