"""
Import of package URLs into the job store.
Input files are named <eventId>.urls.json and hold a JSON array of URLs.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

from jobs.storage import JobStore
from renderer.core import setup_logger

logger = setup_logger("bms.import")

URLS_SUFFIX = ".urls.json"
EVENT_ID_PATTERN = re.compile(r"^[a-z0-9]+$")


@dataclass(frozen=True)
class ImportPlan:
    event_id: str
    urls: List[str]

    def operations(self) -> List[Dict[str, str]]:
        return [{"op": "insert_if_absent", "url": url, "event_id": self.event_id} for url in self.urls]


def event_id_from_path(path) -> str:
    name = Path(path).name
    if not name.endswith(URLS_SUFFIX):
        raise ValueError(f"Input file name must end with {URLS_SUFFIX}; received: {name}")
    event_id = name[:-len(URLS_SUFFIX)]
    if not EVENT_ID_PATTERN.match(event_id):
        raise ValueError(f"Event ID must be an alphanumeric string; received: {event_id}")
    return event_id


def plan_import(path) -> ImportPlan:
    event_id = event_id_from_path(path)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list) or not all(isinstance(url, str) for url in data):
        raise ValueError(f"{path}: expected a JSON array of URL strings")

    # Duplicates inside one file collapse to a single operation
    urls = list(dict.fromkeys(url.strip() for url in data if url.strip()))
    plan = ImportPlan(event_id=event_id, urls=urls)
    logger.info(f"Calculated {len(urls)} operation(s) to perform for event {event_id}...")
    return plan


def apply_import(store: JobStore, plan: ImportPlan) -> Dict[str, int]:
    added_at = datetime.now(timezone.utc)
    inserted = 0
    for url in plan.urls:
        if store.insert_if_absent(url, plan.event_id, added_at):
            inserted += 1
    result = {"inserted": inserted, "existing": len(plan.urls) - inserted}
    logger.info(f"Bulk operation completed! inserted={result['inserted']} existing={result['existing']}")
    return result
