from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import schemas
from .errors import NotFoundError
from .models import Restaurant


def list_restaurants(session: Session, city: Optional[str] = None, cuisine: Optional[str] = None,
                     min_rating: Optional[float] = None, search: Optional[str] = None,
                     limit: int = 20, offset: int = 0) -> Tuple[List[schemas.RestaurantRead], int]:
    """Active restaurants, best rated first, with the total number of active ones."""
    stmt = select(Restaurant).where(Restaurant.is_active.is_(True))
    if city:
        stmt = stmt.where(func.lower(Restaurant.city) == city.lower())
    if cuisine:
        stmt = stmt.where(func.lower(Restaurant.cuisine_type).like(f"%{cuisine.lower()}%"))
    if min_rating is not None:
        stmt = stmt.where(Restaurant.rating >= min_rating)
    if search:
        stmt = stmt.where(func.lower(Restaurant.name).like(f"%{search.lower()}%"))
    stmt = (
        stmt.order_by(Restaurant.rating.desc(), Restaurant.total_ratings.desc(), Restaurant.id)
        .limit(limit)
        .offset(offset)
    )

    rows = [schemas.RestaurantRead.model_validate(r) for r in session.scalars(stmt)]
    total = session.scalar(select(func.count(Restaurant.id)).where(Restaurant.is_active.is_(True)))
    return rows, total


def get_restaurant(session: Session, restaurant_id: int) -> schemas.RestaurantDetail:
    restaurant = session.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFoundError("Restaurant not found")
    return schemas.RestaurantDetail.model_validate(restaurant)
