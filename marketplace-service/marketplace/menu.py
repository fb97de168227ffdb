import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import schemas
from .db import transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .models import MenuItem, utcnow

logger = logging.getLogger("marketplace.menu")


def restaurant_menu(session: Session, restaurant_id: int, category: Optional[str] = None,
                    is_vegetarian: Optional[bool] = None,
                    is_available: Optional[bool] = None) -> List[schemas.MenuItemRead]:
    stmt = select(MenuItem).where(MenuItem.restaurant_id == restaurant_id)
    if category:
        stmt = stmt.where(func.lower(MenuItem.category) == category.lower())
    if is_vegetarian is not None:
        stmt = stmt.where(MenuItem.is_vegetarian == is_vegetarian)
    if is_available is not None:
        stmt = stmt.where(MenuItem.is_available == is_available)
    stmt = stmt.order_by(MenuItem.category, MenuItem.name)
    return [schemas.MenuItemRead.model_validate(m) for m in session.scalars(stmt)]


def add_menu_item(session: Session, restaurant_id: int,
                  payload: schemas.MenuItemCreate) -> schemas.MenuItemRead:
    with transaction(session):
        item = MenuItem(restaurant_id=restaurant_id, **payload.model_dump())
        session.add(item)
        session.flush()

    logger.info("Menu item %s added by restaurant %s", item.id, restaurant_id)
    return schemas.MenuItemRead.model_validate(item)


def _own_item(session: Session, restaurant_id: int, item_id: int) -> MenuItem:
    item = session.scalar(
        select(MenuItem).where(MenuItem.id == item_id, MenuItem.restaurant_id == restaurant_id)
    )
    if item is None:
        raise NotFoundError("Menu item not found or access denied")
    return item


def update_menu_item(session: Session, restaurant_id: int, item_id: int,
                     payload: schemas.MenuItemUpdate) -> schemas.MenuItemRead:
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    with transaction(session):
        item = _own_item(session, restaurant_id, item_id)
        for field, value in changes.items():
            setattr(item, field, value)
        session.flush()

    logger.info("Menu item %s updated (%s)", item.id, ", ".join(sorted(changes)))
    return schemas.MenuItemRead.model_validate(item)


def delete_menu_item(session: Session, restaurant_id: int, item_id: int):
    with transaction(session):
        item = _own_item(session, restaurant_id, item_id)
        session.delete(item)
        try:
            session.flush()
        except IntegrityError:
            raise ConflictError("Menu item has existing orders, disable it instead") from None

    logger.info("Menu item %s deleted by restaurant %s", item_id, restaurant_id)


def toggle_item_availability(session: Session, restaurant_id: int,
                             item_id: int) -> schemas.MenuAvailabilityRead:
    with transaction(session):
        result = session.execute(
            update(MenuItem)
            .where(MenuItem.id == item_id, MenuItem.restaurant_id == restaurant_id)
            .values(is_available=~MenuItem.is_available, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Menu item not found")

    item = session.get(MenuItem, item_id, populate_existing=True)
    return schemas.MenuAvailabilityRead(id=item.id, name=item.name, is_available=item.is_available)
