# src/midi2timeline/config.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import copy
import logging
import yaml

log = logging.getLogger(__name__)

# package root: .../src/midi2timeline
PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG_PATH = PKG_ROOT / "config.default.yaml"
USER_CFG_PATH = Path.home() / ".config" / "midi2timeline" / "config.yaml"

def _safe_load(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        # a broken user file must not stop the analysis
        log.warning("ignoring config %s: %s", path, exc)
    return {}

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out

def load_config(
    user_path: Optional[Path] = None,
    default_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Packaged defaults deep-merged with user overrides. Sections:
    'analysis', 'tension', 'mapper'. Every consumer falls back to its own
    module constants, so a partial or missing file is fine.
    """
    dpath = Path(default_path) if default_path else DEFAULT_CFG_PATH
    upath = Path(user_path) if user_path else USER_CFG_PATH

    cfg = _deep_merge(_safe_load(dpath), _safe_load(upath))
    for section in ("analysis", "tension", "mapper"):
        if not isinstance(cfg.get(section), dict):
            cfg[section] = {}
    return cfg

def section(cfg: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    """Accessor tolerant of None / missing sections."""
    sub = (cfg or {}).get(name)
    return sub if isinstance(sub, dict) else {}
