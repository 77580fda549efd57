"""Shared SQLAlchemy base declarative class and model imports."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ORM models."""


# Import model modules so metadata is populated before create_all.
from app.models import anomaly as _anomaly  # noqa: E402,F401
from app.models import audit_log as _audit_log  # noqa: E402,F401
from app.models import notification as _notification  # noqa: E402,F401
from app.models import order as _order  # noqa: E402,F401
from app.models import user as _user  # noqa: E402,F401
