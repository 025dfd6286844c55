"""Exercise catalog seeding from the bundled JSON list."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import Exercise

logger = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).parent.parent / "data" / "exercises.json"


def load_catalog(path: Optional[Path] = None) -> List[Dict[str, str]]:
    with open(path or CATALOG_PATH, encoding="utf-8") as f:
        return json.load(f)


def seed_exercise_catalog(db: Session, entries: Optional[List[Dict[str, str]]] = None) -> int:
    """Insert catalog entries that are not in the table yet. Returns the number added."""
    entries = entries if entries is not None else load_catalog()
    existing = {row.id for row in db.query(Exercise.id).all()}

    added = 0
    for entry in entries:
        if entry["id"] in existing:
            continue
        db.add(
            Exercise(
                id=entry["id"],
                name=entry["name"],
                primary_muscle_group=entry.get("primary_muscle_group"),
                equipment=entry.get("equipment"),
            )
        )
        existing.add(entry["id"])
        added += 1

    if added:
        db.commit()
        logger.info("Seeded %d exercises", added)
    return added
