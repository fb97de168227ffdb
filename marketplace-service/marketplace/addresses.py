"""Customer delivery addresses.

A customer has at most one default address; marking one as default
clears the flag on the others in the same transaction.
"""

import logging
from typing import List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import schemas
from .db import transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Address

logger = logging.getLogger("marketplace.addresses")


def _clear_default(session: Session, customer_id: int, keep_id: int = None):
    conditions = [Address.user_id == customer_id, Address.is_default.is_(True)]
    if keep_id is not None:
        conditions.append(Address.id != keep_id)
    session.execute(
        update(Address)
        .where(*conditions)
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )


def list_addresses(session: Session, customer_id: int) -> List[schemas.AddressRead]:
    rows = session.scalars(
        select(Address)
        .where(Address.user_id == customer_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
    )
    return [schemas.AddressRead.model_validate(a) for a in rows]


def add_address(session: Session, customer_id: int,
                payload: schemas.AddressCreate) -> schemas.AddressRead:
    with transaction(session):
        if payload.is_default:
            _clear_default(session, customer_id)
        address = Address(user_id=customer_id, **payload.model_dump())
        session.add(address)
        session.flush()

    logger.info("Address %s added for customer %s", address.id, customer_id)
    return schemas.AddressRead.model_validate(address)


def _own_address(session: Session, customer_id: int, address_id: int) -> Address:
    address = session.scalar(
        select(Address).where(Address.id == address_id, Address.user_id == customer_id)
    )
    if address is None:
        raise NotFoundError("Address not found")
    return address


def update_address(session: Session, customer_id: int, address_id: int,
                   payload: schemas.AddressUpdate) -> schemas.AddressRead:
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    with transaction(session):
        address = _own_address(session, customer_id, address_id)
        if changes.get("is_default"):
            _clear_default(session, customer_id, keep_id=address.id)
        for field, value in changes.items():
            setattr(address, field, value)
        session.flush()

    return schemas.AddressRead.model_validate(address)


def delete_address(session: Session, customer_id: int, address_id: int):
    with transaction(session):
        address = _own_address(session, customer_id, address_id)
        session.delete(address)
        try:
            session.flush()
        except IntegrityError:
            raise ConflictError("Address is used by existing orders") from None

    logger.info("Address %s deleted for customer %s", address_id, customer_id)
