from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

import pandas as pd

INTERACTION_TYPES = ("view", "click", "purchase", "favorite", "share", "rate")

# Implicit rating per interaction type; "rate" uses its explicit value.
IMPLICIT_RATINGS = {
    "view": 1.0,
    "click": 2.0,
    "share": 3.0,
    "favorite": 4.0,
    "purchase": 5.0,
}

FRAME_COLUMNS = [
    "user_id",
    "item_id",
    "interaction_type",
    "value",
    "timestamp",
    "source",
    "rating",
]


@dataclass(frozen=True)
class Interaction:
    user_id: str
    item_id: str
    interaction_type: str
    value: float | None
    timestamp: datetime
    source: str = "api"
    session_id: str | None = None
    recommendation_id: str | None = None
    position: int | None = None

    @property
    def implicit_rating(self) -> float:
        if self.interaction_type == "rate":
            return min(5.0, float(self.value or 0.0))
        return IMPLICIT_RATINGS.get(self.interaction_type, 1.0)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class InteractionStore:
    """Append-only, thread-safe interaction log.

    When ``log_path`` is set every interaction is also written as one JSON
    line before ``append`` returns, and ``load()`` replays that file.
    """

    def __init__(self, log_path: Path | str | None = None) -> None:
        self._lock = threading.Lock()
        self._interactions: list[Interaction] = []
        self.log_path = Path(log_path) if log_path else None

    def append(self, interaction: Interaction) -> Interaction:
        with self._lock:
            if self.log_path is not None:
                with self.log_path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(interaction.to_dict()) + "\n")
            self._interactions.append(interaction)
        return interaction

    def load(self) -> int:
        """Replay the JSON-lines log into memory. Returns the number loaded."""
        if self.log_path is None or not self.log_path.exists():
            return 0
        loaded: list[Interaction] = []
        with self.log_path.open(encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)
                raw["timestamp"] = datetime.fromisoformat(raw["timestamp"])
                loaded.append(Interaction(**raw))
        with self._lock:
            self._interactions.extend(loaded)
        return len(loaded)

    def snapshot(self, until: datetime | None = None) -> list[Interaction]:
        """Copy of all interactions recorded at or before ``until``."""
        with self._lock:
            items = list(self._interactions)
        if until is None:
            return items
        return [i for i in items if i.timestamp <= until]

    def for_user(
        self,
        user_id: str,
        *,
        types: Iterable[str] | None = None,
        since: datetime | None = None,
    ) -> list[Interaction]:
        wanted = set(types) if types else None
        return [
            i for i in self.snapshot()
            if i.user_id == user_id
            and (wanted is None or i.interaction_type in wanted)
            and (since is None or i.timestamp >= since)
        ]

    def recently_interacted(
        self, user_id: str, types: Iterable[str], window_days: int,
    ) -> set[str]:
        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        return {i.item_id for i in self.for_user(user_id, types=types, since=since)}

    def count_for_user(self, user_id: str) -> int:
        return sum(1 for i in self.snapshot() if i.user_id == user_id)

    def to_frame(
        self, until: datetime | None = None, since: datetime | None = None,
    ) -> pd.DataFrame:
        rows = [
            {
                "user_id": i.user_id,
                "item_id": i.item_id,
                "interaction_type": i.interaction_type,
                "value": i.value,
                "timestamp": i.timestamp,
                "source": i.source,
                "rating": i.implicit_rating,
            }
            for i in self.snapshot(until)
            if since is None or i.timestamp >= since
        ]
        if not rows:
            return pd.DataFrame(columns=FRAME_COLUMNS)
        df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        return df

    def clear(self) -> None:
        with self._lock:
            self._interactions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._interactions)
