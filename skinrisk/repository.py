"""
Assessment storage boundary.

The engine only needs "latest assessment per user" with upsert semantics;
real persistence lives in the hosting application.
"""
from __future__ import annotations
import threading
from typing import Dict, Optional, Protocol

from skinrisk.models import Assessment


class AssessmentRepository(Protocol):
    def upsert_latest(self, user_id: str, assessment: Assessment) -> Assessment: ...
    def get_latest(self, user_id: str) -> Optional[Assessment]: ...


class InMemoryAssessmentRepository:
    """Process-local repository; a new assessment replaces the previous one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: Dict[str, Assessment] = {}

    def upsert_latest(self, user_id: str, assessment: Assessment) -> Assessment:
        if not user_id:
            raise ValueError("user_id is required")
        stored = assessment.model_copy(deep=True)
        with self._lock:
            self._latest[user_id] = stored
        return stored

    def get_latest(self, user_id: str) -> Optional[Assessment]:
        with self._lock:
            found = self._latest.get(user_id)
        return found.model_copy(deep=True) if found is not None else None

    def __len__(self) -> int:
        return len(self._latest)
