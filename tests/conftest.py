import os
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET', 'env-secret-' + 'x' * 64)
os.environ.setdefault('ADMIN_GROUP_NAME', 'admin')
os.environ.setdefault('STRIPE_KEY', '')
os.environ.setdefault('DB_NAMESPACE', '')

import pytest
from fastapi.testclient import TestClient

from subscription_api.config import Settings
from subscription_api.core.exceptions import PaymentProxyError
from subscription_api.core.security import create_access_token
from subscription_api.database import create_db_engine, init_db
from subscription_api.integrations.payments import PayerProxy
from subscription_api.main import create_app
from subscription_api.models import Subscription, User
from subscription_api.services.subscription_store import SubscriptionStore
from sqlalchemy.orm import sessionmaker

TEST_SECRET = 'test-secret-' + 'x' * 64
TEST_USER_ID = 'joker'
TEST_USER_EMAIL = 'joker@example.com'


@dataclass
class RecordingProxy(PayerProxy):
    """Payment proxy double that records every call."""

    customer_id: str = 'cus_remote'
    create_sub_id: str = 'sub_remote'
    update_sub_id: str = 'sub_updated'
    error: Optional[str] = None
    on_create: Optional[Callable[[], None]] = None
    customer_calls: List[tuple] = field(default_factory=list)
    create_calls: List[tuple] = field(default_factory=list)
    update_calls: List[tuple] = field(default_factory=list)
    delete_calls: List[str] = field(default_factory=list)

    def _maybe_fail(self):
        if self.error:
            raise PaymentProxyError(self.error)

    def create_customer(self, user_id, email, payment_token):
        self.customer_calls.append((user_id, email, payment_token))
        self._maybe_fail()
        return self.customer_id

    def create(self, customer_id, plan, payment_token):
        self.create_calls.append((customer_id, plan, payment_token))
        self._maybe_fail()
        if self.on_create is not None:
            self.on_create()
        return self.create_sub_id

    def update(self, subscription_id, plan, payment_token):
        self.update_calls.append((subscription_id, plan, payment_token))
        self._maybe_fail()
        return self.update_sub_id

    def delete(self, subscription_id):
        self.delete_calls.append(subscription_id)
        self._maybe_fail()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret=TEST_SECRET,
        admin_group_name='admin',
        db_url='sqlite://',
        stripe_key='',
    )


@pytest.fixture
def session_factory(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def proxy():
    return RecordingProxy()


@pytest.fixture
def client(settings, session_factory, proxy):
    app = create_app(settings, session_factory, proxy)
    return TestClient(app)


@pytest.fixture
def unconfigured_client(settings, session_factory):
    app = create_app(settings, session_factory)
    return TestClient(app)


def make_token(user_id=TEST_USER_ID, email=TEST_USER_EMAIL, groups=None, expires_in=timedelta(minutes=5), secret=TEST_SECRET):
    return create_access_token(secret, user_id, email=email, groups=groups or [], expires_in=expires_in)


def auth_headers(admin=False, user_id=TEST_USER_ID, email=TEST_USER_EMAIL):
    groups = ['admin'] if admin else ['members']
    return {'Authorization': 'Bearer ' + make_token(user_id=user_id, email=email, groups=groups)}


def create_subscription(session_factory, user_id, sub_type, plan, remote_id=None):
    db = session_factory()
    try:
        sub = Subscription(
            user_id=user_id,
            type=sub_type,
            plan=plan,
            remote_id=remote_id or f'sub_{user_id}_{sub_type}',
        )
        db.add(sub)
        db.commit()
        return sub.id
    finally:
        db.close()


def create_user(session_factory, user_id=TEST_USER_ID, email=TEST_USER_EMAIL, remote_id='cus_existing'):
    db = session_factory()
    try:
        db.add(User(id=user_id, email=email, remote_id=remote_id))
        db.commit()
    finally:
        db.close()


def load_subscription(session_factory, subscription_id):
    """Unscoped lookup, soft-deleted rows included."""
    db = session_factory()
    try:
        sub = SubscriptionStore(db).get_unscoped(subscription_id)
        if sub is not None:
            db.expunge(sub)
        return sub
    finally:
        db.close()


def active_subscriptions(session_factory, user_id, sub_type=None):
    db = session_factory()
    try:
        query = db.query(Subscription).filter(Subscription.user_id == user_id, Subscription.deleted_at.is_(None))
        if sub_type is not None:
            query = query.filter(Subscription.type == sub_type)
        return [(s.id, s.type, s.plan, s.remote_id) for s in query.all()]
    finally:
        db.close()
