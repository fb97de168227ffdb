import logging
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Header

from . import db

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="-")


def new_correlation_id(header_value: Optional[str]) -> str:
    cid = header_value or str(uuid.uuid4())
    _correlation_id.set(cid)
    return cid


def get_correlation_id(x_correlation_id: Optional[str] = Header(None)):
    current = _correlation_id.get()
    if current != "-":
        return current
    return x_correlation_id or str(uuid.uuid4())


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the request's correlation id."""

    def filter(self, record):
        if not hasattr(record, "correlation_id"):
            record.correlation_id = _correlation_id.get()
        return True


# ----- DB Dependency -----
def get_db():
    s = db.SessionLocal()
    try:
        yield s
    finally:
        s.close()
