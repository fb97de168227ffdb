import logging
from typing import List, Tuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import schemas
from .db import transaction
from .errors import ConflictError, NotFoundError, StateError
from .lifecycle import OrderStatus
from .models import DeliveryPartner, Order, Restaurant, Review, User

logger = logging.getLogger("marketplace.reviews")


def _recompute(session: Session, model, owner_column, rating_column, entity_id: int):
    """Refresh ``rating``/``total_ratings`` of one restaurant or delivery partner.

    Both values come from the database aggregates over the review table in
    a single UPDATE, so concurrent review writers cannot lose each other's
    contribution. ``rating`` falls back to 0 once no rated review remains.
    """
    rated = and_(owner_column == entity_id, rating_column.is_not(None))
    mean = (
        select(func.coalesce(func.round(func.avg(rating_column), 1), 0))
        .where(rated)
        .scalar_subquery()
    )
    count = select(func.count(Review.id)).where(rated).scalar_subquery()
    session.execute(
        update(model)
        .where(model.id == entity_id)
        .values(rating=mean, total_ratings=count)
        .execution_options(synchronize_session=False)
    )


def recompute_restaurant_rating(session: Session, restaurant_id: int):
    _recompute(session, Restaurant, Review.restaurant_id, Review.restaurant_rating, restaurant_id)


def recompute_partner_rating(session: Session, partner_id: int):
    _recompute(session, DeliveryPartner, Review.delivery_partner_id, Review.delivery_rating, partner_id)


def submit_review(session: Session, customer_id: int,
                  payload: schemas.ReviewCreateRequest) -> schemas.ReviewRead:
    with transaction(session):
        order = session.scalar(
            select(Order).where(Order.id == payload.order_id, Order.customer_id == customer_id)
        )
        if order is None:
            raise NotFoundError("Order not found")
        if order.status != OrderStatus.DELIVERED.value:
            raise StateError("You can only review delivered orders")
        if session.scalar(select(Review.id).where(Review.order_id == order.id)) is not None:
            raise ConflictError("You have already reviewed this order")

        review = Review(
            order_id=order.id,
            user_id=customer_id,
            restaurant_id=order.restaurant_id,
            delivery_partner_id=order.delivery_partner_id,
            restaurant_rating=payload.restaurant_rating,
            restaurant_review=payload.restaurant_review,
            delivery_rating=payload.delivery_rating,
            delivery_review=payload.delivery_review,
        )
        session.add(review)
        try:
            session.flush()
        except IntegrityError:
            raise ConflictError("You have already reviewed this order") from None

        if payload.restaurant_rating is not None:
            recompute_restaurant_rating(session, order.restaurant_id)
        if payload.delivery_rating is not None and order.delivery_partner_id:
            recompute_partner_rating(session, order.delivery_partner_id)

    logger.info("Review %s submitted for order %s", review.id, order.id)
    return schemas.ReviewRead.model_validate(review)


def _own_review(session: Session, customer_id: int, review_id: int) -> Review:
    review = session.scalar(select(Review).where(Review.id == review_id, Review.user_id == customer_id))
    if review is None:
        raise NotFoundError("Review not found")
    return review


def update_review(session: Session, customer_id: int, review_id: int,
                  payload: schemas.ReviewUpdateRequest) -> schemas.ReviewRead:
    with transaction(session):
        review = _own_review(session, customer_id, review_id)
        old_restaurant_rating = review.restaurant_rating
        old_delivery_rating = review.delivery_rating

        # omitted fields keep their stored value
        for field, value in payload.model_dump(exclude_none=True).items():
            setattr(review, field, value)
        session.flush()

        if review.restaurant_rating != old_restaurant_rating:
            recompute_restaurant_rating(session, review.restaurant_id)
        if review.delivery_rating != old_delivery_rating and review.delivery_partner_id:
            recompute_partner_rating(session, review.delivery_partner_id)

    logger.info("Review %s updated", review.id)
    return schemas.ReviewRead.model_validate(review)


def delete_review(session: Session, customer_id: int, review_id: int):
    with transaction(session):
        review = _own_review(session, customer_id, review_id)
        restaurant_id, partner_id = review.restaurant_id, review.delivery_partner_id
        session.delete(review)
        session.flush()

        recompute_restaurant_rating(session, restaurant_id)
        if partner_id:
            recompute_partner_rating(session, partner_id)

    logger.info("Review %s deleted", review_id)


# ----- Listings -----

def _stats(session: Session, owner_column, rating_column, entity_id: int) -> schemas.RatingStats:
    avg_rating, total = session.execute(
        select(func.round(func.avg(rating_column), 1), func.count(Review.id)).where(
            owner_column == entity_id, rating_column.is_not(None)
        )
    ).one()
    return schemas.RatingStats(avg_rating=avg_rating, total_reviews=total)


def _public_reviews(session: Session, owner_column, rating_column, text_column, entity_id: int,
                    limit: int, offset: int) -> Tuple[schemas.RatingStats, List[schemas.PublicReview]]:
    rows = session.execute(
        select(Review, User.name)
        .outerjoin(User, User.id == Review.user_id)
        .where(owner_column == entity_id, rating_column.is_not(None))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(limit)
        .offset(offset)
    )
    reviews = [
        schemas.PublicReview(
            id=review.id,
            order_id=review.order_id,
            rating=getattr(review, rating_column.key),
            review=getattr(review, text_column.key),
            customer_name=customer_name,
            created_at=review.created_at,
        )
        for review, customer_name in rows
    ]
    return _stats(session, owner_column, rating_column, entity_id), reviews


def restaurant_reviews(session: Session, restaurant_id: int, limit: int = 20, offset: int = 0):
    return _public_reviews(session, Review.restaurant_id, Review.restaurant_rating,
                           Review.restaurant_review, restaurant_id, limit, offset)


def partner_reviews(session: Session, partner_id: int, limit: int = 20, offset: int = 0):
    return _public_reviews(session, Review.delivery_partner_id, Review.delivery_rating,
                           Review.delivery_review, partner_id, limit, offset)


def my_reviews(session: Session, customer_id: int, limit: int = 20,
               offset: int = 0) -> List[schemas.MyReview]:
    rows = session.execute(
        select(Review, Restaurant.name)
        .outerjoin(Restaurant, Restaurant.id == Review.restaurant_id)
        .where(Review.user_id == customer_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [
        schemas.MyReview(
            **schemas.ReviewRead.model_validate(review).model_dump(),
            restaurant_name=restaurant_name,
        )
        for review, restaurant_name in rows
    ]


def can_review(session: Session, customer_id: int, order_id: int) -> schemas.CanReview:
    status = session.scalar(
        select(Order.status).where(Order.id == order_id, Order.customer_id == customer_id)
    )
    if status is None:
        raise NotFoundError("Order not found")
    if status != OrderStatus.DELIVERED.value:
        return schemas.CanReview(can_review=False, reason="Order not yet delivered")
    if session.scalar(select(Review.id).where(Review.order_id == order_id)) is not None:
        return schemas.CanReview(can_review=False, reason="Already reviewed")
    return schemas.CanReview(can_review=True)
