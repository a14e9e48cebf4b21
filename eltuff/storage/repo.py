from __future__ import annotations

import glob
import json
import shutil
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel

from eltuff.models.common import gen_id


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


def _sort_key(value: Any):
    # None en dernier ; nombres comparés numériquement, le reste (dates ISO) en texte
    if value is None:
        return (True, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (False, value)
    return (False, str(value))


class JsonTable:
    """
    Table JSON générique avec clé primaire configurable.
    - Chaque instruction (insert, update, delete...) est atomique sous le verrou
    - Rotation de backups (backup_enabled, backup_keep)
    - N'écrit pas si le contenu ne change pas
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "row",
        key: str = "id",
        *,
        lock: Optional[threading.RLock] = None,
        backup_enabled: bool = False,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = lock or threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- I/O bas niveau ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # Fichier corrompu → copie de sauvegarde et repart sur table vide
            backup = self.filepath.with_suffix(".corrupt.json")
            shutil.copy2(self.filepath, backup)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

        if self.filepath.exists():
            cur = self.filepath.read_text(encoding="utf-8")
            if cur == new_dump:
                return

        if self.backup_enabled and self.filepath.exists():
            ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
            backup = self.filepath.with_suffix(f".{ts}.bak.json")
            shutil.copy2(self.filepath, backup)
            self._rotate_backups()

        tmp = self.filepath.with_suffix(".tmp")
        tmp.write_text(new_dump, encoding="utf-8")
        tmp.replace(self.filepath)

    # ---------------- Helpers ---------------- #

    def _to_dict(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            record = item.model_dump()
        else:
            record = dict(item)
        # normalise Decimal/date -> texte, comme sur disque
        return json.loads(json.dumps(record, default=_json_default))

    # ---------------- CRUD ---------------- #

    def list_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._read_raw()

    def get_by_id(self, obj_id: Any) -> Optional[Dict[str, Any]]:
        k = self.key
        with self._lock:
            for it in self._read_raw():
                if str(it.get(k)) == str(obj_id):
                    return it
        return None

    def select_eq(
        self,
        field: str,
        value: Any,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [r for r in self._read_raw() if r.get(field) == value]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        return rows

    def insert(self, item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        return self.insert_many([item])[0]

    def insert_many(self, items: Iterable[Union[BaseModel, Mapping[str, Any]]]) -> List[Dict[str, Any]]:
        k = self.key
        records = [self._to_dict(it) for it in items]
        for record in records:
            if not record.get(k):
                record[k] = gen_id()
        with self._lock:
            data = self._read_raw()
            existing = {str(d.get(k)) for d in data}
            for record in records:
                if str(record[k]) in existing:
                    raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
                existing.add(str(record[k]))
            data.extend(records)
            self._write_raw(data)
        return records

    def update(self, obj_id: Any, patch: Mapping[str, Any]) -> Dict[str, Any]:
        k = self.key
        changes = self._to_dict(patch)
        changes.pop(k, None)
        with self._lock:
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if str(existing.get(k)) == str(obj_id):
                    merged = {**existing, **changes}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise KeyError(f"{self.entity_name} with {k}={obj_id} not found")

    def delete(self, obj_id: Any) -> bool:
        k = self.key
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if str(d.get(k)) != str(obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    def delete_eq(self, field: str, value: Any) -> int:
        with self._lock:
            data = self._read_raw()
            new_data = [d for d in data if d.get(field) != value]
            removed = len(data) - len(new_data)
            if removed:
                self._write_raw(new_data)
        return removed


class Database:
    """Ensemble des tables de facturation d'un répertoire de données, verrou partagé."""

    TABLES = {
        "quotes": "quote",
        "quote_items": "quote item",
        "invoices": "invoice",
        "invoice_items": "invoice item",
        "payments": "payment",
    }

    def __init__(self, data_dir: Union[str, Path], *, backup_enabled: bool = False) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        for name, entity in self.TABLES.items():
            table = JsonTable(
                self.data_dir / f"{name}.json",
                entity_name=entity,
                lock=self._lock,
                backup_enabled=backup_enabled,
            )
            setattr(self, name, table)

    # tables créées dans __init__
    quotes: JsonTable
    quote_items: JsonTable
    invoices: JsonTable
    invoice_items: JsonTable
    payments: JsonTable

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Sérialise une séquence d'instructions sur toutes les tables (même processus)."""
        with self._lock:
            yield self
