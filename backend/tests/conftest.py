from __future__ import annotations

import os

os.environ.setdefault("PROJECT_NAME", "membership-test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MP_ACCESS_TOKEN", "test-access-token")
os.environ.setdefault("MP_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("TELEGRAM_PUBLIC_GROUP_ID", "-100123")

from collections.abc import Generator  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from app import crud  # noqa: E402
from app.api.deps import get_db  # noqa: E402
from app.core.result import ErrorCode, Result, fail, ok  # noqa: E402
from app.enums import MemberStatus  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Group, Member, MemberNotification, WebhookEvent, utc_now  # noqa: E402
from app.services.webhook_handlers import HandlerContext  # noqa: E402


class FakePaymentProvider:
    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, Result] = {}
        self.calls: list[tuple[str, str]] = []

    async def get_subscription(self, subscription_id: str) -> Result[dict[str, Any]]:
        self.calls.append(("subscription", subscription_id))
        if subscription_id in self.failures:
            return self.failures[subscription_id]
        if subscription_id not in self.subscriptions:
            return fail(ErrorCode.NOT_FOUND, f"subscription {subscription_id} not found")
        return ok(self.subscriptions[subscription_id])

    async def get_payment(self, payment_id: str) -> Result[dict[str, Any]]:
        self.calls.append(("payment", payment_id))
        if payment_id in self.failures:
            return self.failures[payment_id]
        if payment_id not in self.payments:
            return fail(ErrorCode.NOT_FOUND, f"payment {payment_id} not found")
        return ok(self.payments[payment_id])


class FakeMessenger:
    def __init__(self) -> None:
        self.messages: list[tuple[int, str]] = []
        self.kicks: list[tuple[int, int]] = []
        self.unbans: list[tuple[int, int]] = []
        self.send_results: dict[int, Result] = {}
        self.kick_results: dict[int, Result] = {}

    async def send_private_message(self, telegram_id: int, text: str) -> Result[None]:
        self.messages.append((telegram_id, text))
        return self.send_results.get(telegram_id, ok(None))

    async def kick_member(self, telegram_id: int, chat_id: int) -> Result[None]:
        self.kicks.append((telegram_id, chat_id))
        return self.kick_results.get(telegram_id, ok(None))

    async def unban_member(self, telegram_id: int, chat_id: int) -> Result[None]:
        self.unbans.append((telegram_id, chat_id))
        return ok(None)


class FakeAlerter:
    def __init__(self) -> None:
        self.alerts: list[str] = []
        self.chats: list[int | None] = []

    async def alert(self, text: str, *, chat_id: int | None = None) -> None:
        self.alerts.append(text)
        self.chats.append(chat_id)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(WebhookEvent))
        session.exec(delete(MemberNotification))
        session.exec(delete(Member))
        session.exec(delete(Group))
        session.commit()


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def alerter() -> FakeAlerter:
    return FakeAlerter()


@pytest.fixture
def ctx(db, provider, messenger, alerter) -> HandlerContext:
    return HandlerContext(session=db, provider=provider, messenger=messenger, alerter=alerter)


@pytest.fixture
def make_group(db):
    def _make(group_id: str, **fields: Any) -> Group:
        group = Group(id=group_id, name=fields.pop("name", group_id), **fields)
        return crud.create_group(session=db, group=group)

    return _make


@pytest.fixture
def make_member(db):
    def _make(**fields: Any) -> Member:
        now = utc_now()
        values: dict[str, Any] = {
            "status": MemberStatus.trial,
            "trial_started_at": now,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        member = Member(**values)
        db.add(member)
        db.commit()
        db.refresh(member)
        return member

    return _make
