"""Shared fixtures: in-memory database, fast settings and a scripted completion client."""

import json
import os
import tempfile
from collections.abc import Callable, Generator
from datetime import date
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("LLM_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOCAL_STORAGE_ROOT", tempfile.mkdtemp(prefix="statement-uploads-"))

from app.core.db import Base, BusinessProfile, get_engine  # noqa: E402
from app.core.models import CategorizedTransaction, ProfileType, RawTransaction  # noqa: E402
from app.core.settings import Settings  # noqa: E402

Handler = Callable[[dict[str, Any]], Any]


class ScriptedCompletions:
    """Stands in for ``client.chat.completions``; each call is answered by ``handler(kwargs)``."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        result = self.handler(kwargs)
        if isinstance(result, Exception):
            raise result
        if not isinstance(result, str):
            result = json.dumps(result)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=result))])


class ScriptedClient:
    def __init__(self, handler: Handler) -> None:
        self.chat = SimpleNamespace(completions=ScriptedCompletions(handler))

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.chat.completions.calls


def prompt_text(kwargs: dict[str, Any]) -> str:
    """The text part of the (single) user message of a completion call."""
    content = kwargs["messages"][0]["content"]
    if isinstance(content, str):
        return content
    return "\n".join(part["text"] for part in content if part.get("type") == "text")


def raw(description: str, amount: float, day: date | None = None) -> RawTransaction:
    return RawTransaction(date=day or date(2024, 3, 15), description=description, amount=amount)


def categorized(
    description: str,
    amount: float,
    category: str = "Office Supplies",
    confidence: float = 0.9,
    profile_type: ProfileType = ProfileType.BUSINESS,
    merchant: str | None = None,
    day: date | None = None,
    is_recurring: bool = False,
) -> CategorizedTransaction:
    return CategorizedTransaction(
        original=raw(description, amount, day),
        suggested_category=category,
        confidence=confidence,
        merchant=merchant or description,
        profile_type=profile_type,
        is_recurring=is_recurring,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        llm_api_key="test-key",
        database_url="sqlite://",
        timeout_retry_delay=0,
        page_retry_base_delay=0,
        inter_page_delay=0,
        categorize_retry_base_delay=0,
        local_storage_root=tempfile.mkdtemp(prefix="statement-uploads-"),
    )


@pytest.fixture
def session_factory() -> sessionmaker:
    engine = get_engine("sqlite://")
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def profiles(session: Session) -> dict[str, str]:
    """One default business profile and one personal profile for user ``u1``."""
    business = BusinessProfile(user_id="u1", name="Acme LLC", type=ProfileType.BUSINESS.value, is_default=True)
    personal = BusinessProfile(user_id="u1", name="Personal", type=ProfileType.PERSONAL.value)
    session.add_all([business, personal])
    session.commit()
    return {"business": business.id, "personal": personal.id}
