from contextlib import contextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser, UserRole
from libs.db.base import Base
from libs.db.session import get_async_db
from services.orders_service import models as _order_models  # noqa: F401
from services.orders_service.models import FulfillmentType
from services.orders_service.services.assembly import CartLine, assemble_order
from tests.factories import BranchFactory, CoffeeFactory, UserFactory


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_user(role: UserRole = UserRole.CUSTOMER, user_id=None) -> AuthUser:
    """Build the authenticated caller the identity service would hand us."""
    return AuthUser(user_id=user_id or uuid.uuid4(), role=role)


@contextmanager
def override_auth(app, user: AuthUser):
    """Temporarily authenticate every request to ``app`` as ``user``."""
    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield user
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    Fresh SQLite file database per test.

    A file (not :memory:) so that separate sessions get separate connections
    and concurrent writers really contend for the same rows.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass
class Shop:
    """Ids of one branch, a small menu and a user per role.

    Plain ids, not ORM instances: a rolled-back session expires everything
    it loaded, and async sessions cannot lazy-load them back.
    """

    branch_id: uuid.UUID
    other_branch_id: uuid.UUID
    latte_id: uuid.UUID  # 3.00
    mocha_id: uuid.UUID  # 4.50
    sold_out_id: uuid.UUID
    users: dict

    def actor(self, name: str) -> AuthUser:
        user_id, role = self.users[name]
        return make_user(role, user_id)

    def user_id(self, name: str) -> uuid.UUID:
        return self.users[name][0]


@pytest_asyncio.fixture
async def shop(db_session) -> Shop:
    branch = BranchFactory.create(name="Downtown")
    other_branch = BranchFactory.create(name="Harbour")
    latte = CoffeeFactory.create(name="Latte", price="3.00")
    mocha = CoffeeFactory.create(name="Mocha", price="4.50")
    sold_out = CoffeeFactory.create(name="Seasonal Special", is_available=False)

    users = {
        "customer": UserFactory.create(role=UserRole.CUSTOMER),
        "other_customer": UserFactory.create(role=UserRole.CUSTOMER),
        "admin": UserFactory.create(role=UserRole.ADMIN),
        "manager": UserFactory.create(role=UserRole.MANAGER, branch_id=branch.id),
        "staff": UserFactory.create(role=UserRole.STAFF, branch_id=branch.id),
        "other_staff": UserFactory.create(
            role=UserRole.STAFF, branch_id=other_branch.id
        ),
        "agent": UserFactory.create(role=UserRole.DELIVERY, branch_id=branch.id),
        "other_agent": UserFactory.create(role=UserRole.DELIVERY, branch_id=branch.id),
    }

    db_session.add_all([branch, other_branch, latte, mocha, sold_out])
    await db_session.flush()
    db_session.add_all(list(users.values()))
    await db_session.commit()

    return Shop(
        branch_id=branch.id,
        other_branch_id=other_branch.id,
        latte_id=latte.id,
        mocha_id=mocha.id,
        sold_out_id=sold_out.id,
        users={name: (user.id, user.role) for name, user in users.items()},
    )


@pytest.fixture
def place_order(db_session, shop):
    """Create a CREATED order (2 lattes + 1 mocha) and return its id."""

    async def _place_order(
        fulfillment_type: FulfillmentType = FulfillmentType.DELIVERY,
        customer: str = "customer",
        **overrides,
    ) -> uuid.UUID:
        kwargs = {
            "customer_id": shop.user_id(customer),
            "branch_id": shop.branch_id,
            "fulfillment_type": fulfillment_type,
            "items": [
                CartLine(item_id=shop.latte_id, quantity=2),
                CartLine(item_id=shop.mocha_id, quantity=1),
            ],
            "delivery_address": (
                "12 Bean Street"
                if fulfillment_type == FulfillmentType.DELIVERY
                else None
            ),
        }
        kwargs.update(overrides)
        order = await assemble_order(db_session, **kwargs)
        return order.id

    return _place_order


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def orders_app(session_factory):
    """The orders app wired to the per-test database."""
    from services.orders_service.app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def orders_client(orders_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=orders_app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def as_user(orders_app):
    """Shortcut: ``with as_user(shop.actor("staff")): ...``."""

    def _as_user(user: Optional[AuthUser]):
        return override_auth(orders_app, user)

    return _as_user
