from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subscription_api.core.exceptions import StoreError
from subscription_api.models import Subscription, User


class SubscriptionStore:
    """Persistence for subscriptions and the users that own them."""

    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return self.db.query(Subscription).filter(Subscription.deleted_at.is_(None))

    def list_for_user(self, user_id: str) -> list[Subscription]:
        try:
            return (
                self._active()
                .filter(Subscription.user_id == user_id)
                .order_by(Subscription.created_at, Subscription.id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def find(self, user_id: str, sub_type: str) -> Optional[Subscription]:
        try:
            return (
                self._active()
                .filter(Subscription.user_id == user_id, Subscription.type == sub_type)
                .order_by(Subscription.created_at, Subscription.id)
                .first()
            )
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def get_unscoped(self, subscription_id: str) -> Optional[Subscription]:
        """Fetch by id, including soft-deleted rows."""
        try:
            return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def create(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self._commit(refresh=subscription)
        return subscription

    def save(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self._commit(refresh=subscription)
        return subscription

    def soft_delete(self, subscription: Subscription) -> None:
        subscription.deleted_at = datetime.now(timezone.utc)
        self.db.add(subscription)
        self._commit()

    def find_user(self, user_id: str) -> Optional[User]:
        try:
            return (
                self.db.query(User)
                .filter(User.id == user_id, User.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def create_user(self, user_id: str, email: str, remote_id: str) -> User:
        try:
            user = self.db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc
        if user is None:
            user = User(id=user_id)
        user.email = email
        user.remote_id = remote_id
        self.db.add(user)
        self._commit()
        return user

    def _commit(self, refresh=None) -> None:
        try:
            self.db.commit()
            if refresh is not None:
                self.db.refresh(refresh)
        except (SQLAlchemyError, ValueError) as exc:
            self.db.rollback()
            raise StoreError(str(exc)) from exc
