from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class JobRecord:
    """
    One package to render.
    Invariants: url is unique; a record is dispatched only while rendered_at is unset,
    and each attempt sets exactly one of render_result / render_error.
    """
    id: int
    url: str
    event_id: Optional[str] = None
    added_at: Optional[datetime] = None
    render_result: Optional[Dict[str, Any]] = None
    render_error: Optional[str] = None
    rendered_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.rendered_at is None and self.render_result is None
