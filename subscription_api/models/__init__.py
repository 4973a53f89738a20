"""
SQLAlchemy models for the subscription service.
"""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Index, Text, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from subscription_api.config import get_settings

Base = declarative_base()

# Namespace puts every table under a common prefix so several services can
# share one database without name collisions.
NAMESPACE = get_settings().db_namespace


def table_name(default_name: str) -> str:
    if NAMESPACE:
        return f"{NAMESPACE}_{default_name}"
    return default_name


class User(Base):
    __tablename__ = table_name("users")

    id = Column(Text, primary_key=True)
    email = Column(Text)
    remote_id = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r} remote_id={self.remote_id!r}>"


class Subscription(Base):
    __tablename__ = table_name("subscriptions")
    __table_args__ = (Index(f"ix_{table_name('subscriptions')}_user_type", "user_id", "type"),)

    id = Column(Text, primary_key=True)
    type = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    remote_id = Column(Text, nullable=False)
    plan = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True))

    REQUIRED_FIELDS = ("user_id", "plan", "remote_id", "type")

    def missing_fields(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id!r} type={self.type!r} user_id={self.user_id!r} "
            f"remote_id={self.remote_id!r} plan={self.plan!r}>"
        )


@event.listens_for(Subscription, "before_insert")
def _prepare_subscription(mapper, connection, target: Subscription) -> None:
    target.id = str(uuid.uuid4())
    missing = target.missing_fields()
    if missing:
        raise ValueError("Missing required fields: " + ",".join(missing))


__all__ = ["Base", "NAMESPACE", "Subscription", "User", "table_name"]
