"""Equipment registry: the shared instruments bookings and sessions refer to."""
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from .cache import LookupCache
from .config import get_settings
from .errors import InvalidInputError
from .models import Equipment
from .policy import Operation, Resource, ensure
from .schemas import EquipmentCreate, EquipmentRead
from .tokens import Principal

logger = logging.getLogger(__name__)

settings = get_settings()
equipment_cache: LookupCache[List[EquipmentRead]] = LookupCache(ttl=settings.equipment_cache_ttl)
_LISTING_KEY = "equipment:all"

DEFAULT_EQUIPMENT = (
    EquipmentCreate(
        id="bio-1",
        name="Bioscope A",
        location="Lab Room 101",
        specs={"max_magnification": "1000x", "type": "compound"},
    ),
    EquipmentCreate(
        id="bio-2",
        name="Bioscope B",
        location="Lab Room 102",
        specs={"max_magnification": "1000x", "type": "compound"},
    ),
    EquipmentCreate(
        id="bio-3",
        name="Bioscope C",
        location="Lab Room 103",
        specs={"max_magnification": "400x", "type": "stereo"},
    ),
)


def list_equipment(db: Session, principal: Principal) -> List[EquipmentRead]:
    ensure(principal, Operation.LIST, Resource.EQUIPMENT)

    def load() -> List[EquipmentRead]:
        rows = db.scalars(select(Equipment).order_by(Equipment.id))
        return [EquipmentRead.model_validate(row) for row in rows]

    return equipment_cache.get_or_load(_LISTING_KEY, load)


def create_equipment(db: Session, principal: Principal, equipment_in: EquipmentCreate) -> Equipment:
    ensure(principal, Operation.CREATE, Resource.EQUIPMENT, message="Only admins can register equipment")
    if db.get(Equipment, equipment_in.id) is not None:
        raise InvalidInputError(f"Equipment '{equipment_in.id}' already exists")
    equipment = Equipment(**equipment_in.model_dump())
    db.add(equipment)
    db.commit()
    db.refresh(equipment)
    equipment_cache.invalidate()
    logger.info("equipment %s registered by %s", equipment.id, principal.user_id)
    return equipment


def seed_default_equipment(db: Session) -> int:
    """Insert the default bioscopes that are missing; returns how many were added."""

    added = 0
    for item in DEFAULT_EQUIPMENT:
        if db.get(Equipment, item.id) is None:
            db.add(Equipment(**item.model_dump()))
            added += 1
    db.commit()
    equipment_cache.invalidate()
    return added
