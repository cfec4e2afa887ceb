import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "0"
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finance_api.ai import InferenceError, get_inference_client
from finance_api.db import get_db
from finance_api.main import app
from finance_api.models import Base


class FakeInference:
    """Stands in for the hosted model. Records every call it receives."""

    def __init__(self, answers=None, caption="", ranking=None, advice="Spend less on food.",
                 fail_caption=False, fail_questions=False, fail_classify=False, fail_generate=False):
        self.answers = answers or {}
        self.caption = caption
        self.ranking = ranking or [("Other", 1.0)]
        self.advice = advice
        self.fail_caption = fail_caption
        self.fail_questions = fail_questions
        self.fail_classify = fail_classify
        self.fail_generate = fail_generate
        self.calls = []

    async def ask_image(self, image, question):
        self.calls.append(("ask", question))
        if self.fail_questions:
            raise InferenceError("question failed")
        for field, answer in self.answers.items():
            if field in question.lower():
                return answer
        return ""

    async def caption_image(self, image):
        self.calls.append(("caption", image))
        if self.fail_caption:
            raise InferenceError("caption model unavailable")
        return self.caption

    async def classify(self, text, labels):
        self.calls.append(("classify", text))
        if self.fail_classify:
            raise InferenceError("classifier unavailable")
        return self.ranking

    async def generate(self, messages):
        self.calls.append(("generate", messages))
        if self.fail_generate:
            raise InferenceError("generation failed")
        return self.advice


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def fake_ai():
    return FakeInference()


def _client_for(engine, fake_ai):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_inference_client] = lambda: fake_ai
    return TestClient(app)


@pytest.fixture
def client(engine, fake_ai):
    yield _client_for(engine, fake_ai)
    app.dependency_overrides.clear()


@pytest.fixture
def bare_client(fake_ai):
    """Client against a database where no table has been created."""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    yield _client_for(eng, fake_ai)
    app.dependency_overrides.clear()
    eng.dispose()


@pytest.fixture
def headers():
    return {"user-id": "user-1"}
