from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_CATALOG_CSV = _DATA_DIR / "menu_items.csv"

AVAILABILITY_THRESHOLD = 0.5

PRICE_BANDS = ["$", "$$", "$$$", "$$$$"]


def price_band(price: float | None) -> str | None:
    if price is None or pd.isna(price):
        return None
    if price <= 4:
        return "$"
    if price <= 8:
        return "$$"
    if price <= 12:
        return "$$$"
    return "$$$$"


def price_band_distance(a: str, b: str) -> int:
    """Return how many band steps apart two price bands are."""
    try:
        return abs(PRICE_BANDS.index(a) - PRICE_BANDS.index(b))
    except ValueError:
        return 0


def _split_tags(value: Any) -> list[str]:
    if not isinstance(value, str):
        return []
    return [t.strip().lower() for t in value.split(";") if t.strip()]


def _prepare(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df["item_id"] = df["item_id"].astype(str)
    for column, default in (
        ("name", ""),
        ("category", None),
        ("cuisine_type", None),
        ("description", ""),
        ("meal_periods", ""),
        ("dietary_tags", ""),
    ):
        if column not in df.columns:
            df[column] = default
    for column, default in (
        ("price", 0.0),
        ("rating_average", 0.0),
        ("popularity_score", 0.0),
        ("availability_score", 1.0),
        ("spice_level", 0.0),
    ):
        if column not in df.columns:
            df[column] = default
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(default)

    df["category"] = df["category"].where(df["category"].notna(), None)
    df["category_lower"] = df["category"].fillna("").astype(str).str.lower()
    df["description"] = df["description"].fillna("").astype(str)
    df["meal_periods_list"] = df["meal_periods"].apply(_split_tags)
    df["dietary_tags_list"] = df["dietary_tags"].apply(_split_tags)
    df["price_band"] = df["price"].apply(price_band)
    return df.set_index("item_id", drop=False)


class Catalog:
    """In-memory view of item features supplied by the catalog service."""

    def __init__(self, df: pd.DataFrame) -> None:
        self.df = _prepare(df)

    @classmethod
    def from_csv(cls, path: Path | str = DEFAULT_CATALOG_CSV) -> "Catalog":
        return cls(pd.read_csv(path, dtype={"item_id": str}))

    def available_ids(self) -> list[str]:
        mask = self.df["availability_score"] > AVAILABILITY_THRESHOLD
        return self.df.index[mask].tolist()

    def is_available(self, item_id: str) -> bool:
        return item_id in self.df.index and (
            float(self.df.at[item_id, "availability_score"]) > AVAILABILITY_THRESHOLD
        )

    def rows(self, item_ids: Iterable[str]) -> pd.DataFrame:
        ids = [i for i in item_ids if i in self.df.index]
        return self.df.loc[ids]

    def get(self, item_id: str) -> pd.Series | None:
        if item_id not in self.df.index:
            return None
        return self.df.loc[item_id]

    def category_of(self, item_id: str) -> str | None:
        if item_id not in self.df.index:
            return None
        return self.df.at[item_id, "category"]

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.df.index

    def __len__(self) -> int:
        return len(self.df)


_catalog: Catalog | None = None


def get_catalog() -> Catalog:
    """Return the process catalog, loading it on first call."""
    global _catalog
    if _catalog is None:
        path = os.getenv("MENUREC_CATALOG_PATH") or DEFAULT_CATALOG_CSV
        _catalog = Catalog.from_csv(path)
    return _catalog
