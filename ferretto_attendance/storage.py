"""Identity, attendance and activity-log stores.

The controllers only see the abstract interfaces. JsonAppStore implements
all of them over a single JSON document holding ``users``, ``attendance``
and ``logs``.
"""

import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .types import AttendanceRecord, IdentityId

logger = logging.getLogger(__name__)


def normalize_descriptor(value: Any) -> Optional[np.ndarray]:
    """Read a stored face descriptor in any of its historical shapes.

    Accepts a list of numbers, a numpy array or ``{"data": [...]}``.
    Anything else is treated as "no descriptor".
    """
    if isinstance(value, dict):
        value = value.get("data")
    if isinstance(value, np.ndarray):
        value = value.ravel()
    elif not isinstance(value, (list, tuple)):
        return None
    if len(value) == 0:
        return None
    try:
        return np.asarray(value, dtype=np.float32).ravel()
    except (TypeError, ValueError):
        return None


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _same_id(a: IdentityId, b: IdentityId) -> bool:
    return str(a) == str(b)


class IdentityStore(ABC):
    """Reference embeddings keyed by identity."""

    @abstractmethod
    def get_reference_embedding(self, identity_id: IdentityId) -> Optional[np.ndarray]:
        pass

    @abstractmethod
    def set_reference_embedding(self, identity_id: IdentityId, embedding: np.ndarray) -> None:
        """Replace the identity's reference embedding."""
        pass


class AttendanceStore(ABC):
    """Append-only attendance records."""

    @abstractmethod
    def append_record(self, record: AttendanceRecord) -> None:
        pass

    @abstractmethod
    def records_for(self, identity_id: Optional[IdentityId] = None) -> List[AttendanceRecord]:
        pass

    def has_record_for(self, identity_id: IdentityId, date: str) -> bool:
        """Check whether attendance was already marked on a date."""
        return any(r.date == date for r in self.records_for(identity_id))


class ActivityLog(ABC):
    """Audit trail of attendance actions."""

    @abstractmethod
    def log(self, action: str, details: str, identity_id: Optional[IdentityId] = None) -> None:
        pass


def default_data() -> Dict[str, Any]:
    """Initial document with the demo admin and student accounts."""
    created = _now_iso()
    return {
        "users": [
            {"id": 1, "username": "admin", "name": "System Admin", "role": "admin",
             "status": "active", "face_descriptor": None, "created_at": created},
            {"id": 2, "username": "student", "name": "Demo Student", "role": "student",
             "status": "active", "face_descriptor": None, "created_at": created},
        ],
        "attendance": [],
        "logs": [],
    }


class JsonAppStore(IdentityStore, AttendanceStore, ActivityLog):
    """All stores backed by one JSON document."""

    def __init__(self, data_file: Optional[str] = None, max_log_entries: int = 500):
        """Initialize the store.

        Args:
            data_file: Path of the JSON document. If None, data is kept in
                       memory only.
            max_log_entries: Activity log entries kept, newest first
        """
        self._path = Path(data_file) if data_file else None
        self.max_log_entries = max_log_entries
        self._data = self._load()

    def _load(self) -> Dict[str, Any]:
        if self._path is None or not self._path.exists():
            data = default_data()
            self._data = data
            self.save()
            return data

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load {self._path}, starting from defaults: {e}")
            data = default_data()

        data.setdefault("users", [])
        data.setdefault("attendance", [])
        data.setdefault("logs", [])
        for user in data["users"]:
            raw = user.pop("faceDescriptor", user.get("face_descriptor"))
            descriptor = normalize_descriptor(raw)
            user["face_descriptor"] = descriptor.tolist() if descriptor is not None else None

        logger.info(f"Loaded {len(data['users'])} users, {len(data['attendance'])} attendance records")
        return data

    def save(self) -> None:
        """Write the document atomically."""
        if self._path is None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self._path.parent), prefix=self._path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp, self._path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    # Users

    def users(self) -> List[Dict[str, Any]]:
        return list(self._data["users"])

    def get_user(self, identity_id: IdentityId) -> Optional[Dict[str, Any]]:
        for user in self._data["users"]:
            if _same_id(user["id"], identity_id):
                return user
        return None

    def get_reference_embedding(self, identity_id: IdentityId) -> Optional[np.ndarray]:
        user = self.get_user(identity_id)
        if user is None:
            return None
        return normalize_descriptor(user.get("face_descriptor"))

    def set_reference_embedding(self, identity_id: IdentityId, embedding: np.ndarray) -> None:
        user = self.get_user(identity_id)
        if user is None:
            raise KeyError(f"Unknown identity: {identity_id}")

        previous = user.get("face_descriptor")
        user["face_descriptor"] = [float(x) for x in np.asarray(embedding).ravel()]
        try:
            self.save()
        except Exception:
            user["face_descriptor"] = previous
            raise
        logger.debug(f"Stored reference embedding for {identity_id}")

    # Attendance

    def append_record(self, record: AttendanceRecord) -> None:
        attendance = self._data["attendance"]
        attendance.append(record.to_dict())
        try:
            self.save()
        except Exception:
            attendance.pop()
            raise

    def records_for(self, identity_id: Optional[IdentityId] = None) -> List[AttendanceRecord]:
        records = [AttendanceRecord.from_dict(r) for r in self._data["attendance"]]
        if identity_id is None:
            return records
        return [r for r in records if _same_id(r.identity_id, identity_id)]

    # Activity log

    def log(self, action: str, details: str, identity_id: Optional[IdentityId] = None) -> None:
        logs = self._data["logs"]
        previous = list(logs)
        logs.insert(0, {
            "id": int(time.time() * 1000),
            "ts": _now_iso(),
            "identity_id": identity_id,
            "action": action,
            "details": details,
        })
        del logs[self.max_log_entries:]
        try:
            self.save()
        except Exception:
            logs[:] = previous
            raise

    def logs(self) -> List[Dict[str, Any]]:
        return list(self._data["logs"])
