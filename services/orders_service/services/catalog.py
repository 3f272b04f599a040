"""Catalog lookup consumed by order assembly.

The menu is owned by the catalog subsystem. This module only answers "what
does this item cost right now and can it be sold", in one batch. An item the
catalog does not know is simply absent from the answer; a store failure
surfaces as an exception, so the two cases are never confused.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from services.orders_service.models import CoffeeRef
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class CatalogItem:
    """Price and availability of one menu item at lookup time."""

    item_id: uuid.UUID
    name: str
    unit_price: Decimal
    available: bool


class CatalogLookup(Protocol):
    async def get_items(
        self, db: AsyncSession, item_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, CatalogItem]: ...


class DatabaseCatalog:
    """Reads the shared ``coffees`` table."""

    async def get_items(
        self, db: AsyncSession, item_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, CatalogItem]:
        ids = set(item_ids)
        if not ids:
            return {}

        result = await db.execute(select(CoffeeRef).where(CoffeeRef.id.in_(ids)))
        return {
            coffee.id: CatalogItem(
                item_id=coffee.id,
                name=coffee.name,
                unit_price=coffee.price,
                available=coffee.is_available,
            )
            for coffee in result.scalars().all()
        }


default_catalog = DatabaseCatalog()
