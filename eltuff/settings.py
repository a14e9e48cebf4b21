from __future__ import annotations
import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.environ.get("ELTUFF_DATA_DIR") or ROOT_DIR / "data")
SETTINGS_JSON = "settings.json"


# ---------- Utils JSON ----------
def _load_json(path: os.PathLike | str):
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("Réglages illisibles (%s), valeurs par défaut utilisées", p)
        return None

def _dump_json(path: os.PathLike | str, data) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


# ---------- Modèle ----------
class Numbering(BaseModel):
    invoice_prefix: str = "INV-"
    quote_prefix: str = "QT-"
    invoice_seq: int = 1
    quote_seq: int = 1


class BillingSettings(BaseModel):
    currency: str = "GHS"
    minor_unit_places: int = 2
    default_tax_pct: Decimal = Decimal("0")
    default_due_days: Optional[int] = None
    log_level: str = "INFO"
    numbering: Numbering = Field(default_factory=Numbering)


def settings_path(data_dir: Optional[os.PathLike | str] = None) -> Path:
    return Path(data_dir or DATA_DIR) / SETTINGS_JSON


def load_settings(data_dir: Optional[os.PathLike | str] = None) -> BillingSettings:
    raw = _load_json(settings_path(data_dir)) or {}
    if not isinstance(raw, dict):
        raw = {}
    try:
        return BillingSettings(**raw)
    except ValidationError as e:
        logger.warning("Réglages invalides, valeurs par défaut utilisées: %s", e)
        return BillingSettings()


def next_number(kind: str, data_dir: Optional[os.PathLike | str] = None) -> str:
    """Numéro suivant (INV-0001, QT-0001...) ; la séquence est persistée dans settings.json."""
    path = settings_path(data_dir)
    s: Dict[str, Any] = _load_json(path) or {}
    numbering = s.get("numbering", {}) if isinstance(s.get("numbering"), dict) else {}
    defaults = Numbering()
    prefix = numbering.get(f"{kind}_prefix", getattr(defaults, f"{kind}_prefix"))
    seq_key = f"{kind}_seq"
    seq = int(numbering.get(seq_key, 1))
    numbering[seq_key] = seq + 1
    s["numbering"] = numbering
    _dump_json(path, s)
    return f"{prefix}{seq:04d}"


def configure_logging(level: Optional[str] = None, data_dir: Optional[os.PathLike | str] = None) -> None:
    lvl = level or os.environ.get("ELTUFF_LOG_LEVEL") or load_settings(data_dir).log_level
    logging.basicConfig(
        level=getattr(logging, str(lvl).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
