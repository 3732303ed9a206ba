from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List
from jobs.models import JobRecord


class JobStore(ABC):
    """
    Abstract interface for job record storage.
    Every mutation is keyed by record identity, so concurrent writers never touch the same row.
    """

    @abstractmethod
    def find_pending(self) -> List[JobRecord]:
        """Retrieve every record that has not been attempted yet."""
        pass

    @abstractmethod
    def save_result(self, job_id: int, result: Dict[str, Any], rendered_at: datetime) -> None:
        """Attach a render result to a record and mark it attempted."""
        pass

    @abstractmethod
    def save_error(self, job_id: int, error: str, rendered_at: datetime) -> None:
        """Attach a render error description to a record and mark it attempted."""
        pass

    @abstractmethod
    def insert_if_absent(self, url: str, event_id: str, added_at: datetime) -> bool:
        """
        Atomically create a record for `url` ONLY if none exists.
        Returns True if created, False if already exists.
        """
        pass
