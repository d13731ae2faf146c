"""Catalog-backed inventory requirements source.

Builds the payload attached to a plan by the inventory stage: a per-job parts
manifest, a shopping list for items the technician is short of, and stock
alerts. The planning core never inspects this payload.
"""

from __future__ import annotations

import functools
import json
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from ...config import settings
from ...models.domain import Job

LOW_STOCK_THRESHOLD = 1


@dataclass(slots=True)
class StockItem:
    item_id: str
    name: str
    quantity: int
    unit: str = "each"
    category: str = "general"
    preferred_supplier: Optional[str] = None


@functools.lru_cache(maxsize=1)
def load_catalog(source: Optional[Path] = None) -> tuple[StockItem, ...]:
    """Load the stock catalog from a JSON array of item objects."""

    json_path = source or settings.inventory_catalog_file
    if json_path is None:
        return tuple()
    if not json_path.exists():
        raise FileNotFoundError(f"Inventory catalog not found: {json_path}")
    with json_path.open("r", encoding="utf-8") as handle:
        raw_items = json.load(handle)
    if not isinstance(raw_items, list):
        raise ValueError(f"Inventory catalog '{json_path}' must contain a JSON array.")
    return tuple(
        StockItem(
            item_id=str(item["item_id"]),
            name=str(item.get("name") or item["item_id"]),
            quantity=int(item.get("quantity", 0)),
            unit=str(item.get("unit") or "each"),
            category=str(item.get("category") or "general"),
            preferred_supplier=item.get("preferred_supplier"),
        )
        for item in raw_items
    )


class CatalogInventorySource:
    name = "catalog"

    def __init__(self, catalog: Sequence[StockItem] = ()) -> None:
        self.catalog = {item.item_id: item for item in catalog}

    async def derive_requirements(self, jobs: Sequence[Job]) -> dict[str, Any]:
        demand: Counter[str] = Counter()
        manifest = []
        for job in jobs:
            needed = Counter(job.required_items)
            demand.update(needed)
            manifest.append(
                {
                    "job_id": job.id,
                    "required_parts": [
                        self._part_entry(item_id, quantity) for item_id, quantity in needed.items()
                    ],
                }
            )

        shopping_list = []
        alerts = []
        for item_id, quantity_needed in demand.items():
            stock = self.catalog.get(item_id)
            available = stock.quantity if stock else 0
            name = stock.name if stock else item_id
            shortfall = quantity_needed - available
            if shortfall > 0:
                shopping_list.append(
                    {
                        "item_name": name,
                        "quantity_needed": shortfall,
                        "unit": stock.unit if stock else "each",
                        "category": stock.category if stock else "general",
                        "preferred_supplier": stock.preferred_supplier if stock else None,
                        "priority": "high" if available == 0 else "medium",
                    }
                )
            if available == 0:
                alerts.append(
                    {
                        "item_name": name,
                        "alert_type": "out_of_stock",
                        "message": f"No {name} in stock; {quantity_needed} needed today.",
                    }
                )
            elif available - quantity_needed <= LOW_STOCK_THRESHOLD:
                alerts.append(
                    {
                        "item_name": name,
                        "alert_type": "reorder_needed" if shortfall > 0 else "low_stock",
                        "message": f"{name} will be at {max(available - quantity_needed, 0)} after today's jobs.",
                    }
                )

        return {
            "parts_manifest": manifest,
            "shopping_list": shopping_list,
            "inventory_alerts": alerts,
        }

    def _part_entry(self, item_id: str, quantity: int) -> dict[str, Any]:
        stock = self.catalog.get(item_id)
        return {
            "inventory_item_id": item_id,
            "item_name": stock.name if stock else item_id,
            "quantity_needed": quantity,
            "quantity_available": stock.quantity if stock else 0,
            "unit": stock.unit if stock else "each",
            "category": stock.category if stock else "general",
        }
