"""
Shared fixtures.

Every test gets its own SQLite file (aiosqlite) with the full schema.
Seeding happens in a separate session so services under test load rows
the same way they do in production.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SUPABASE_URL"] = "https://identity.test"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewind.database import Base, get_session, run_in_transaction
from rewind.dependencies import get_current_user
from rewind.main import app
from rewind.models import Difficulty, Pattern, Question, User, UserPatternStats, UserQuestion, UserQuestionStatus
from rewind.services.subscription_service import subscription_service
from rewind.services.user_question_service import user_question_service


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave (pysqlite quirk)
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session_factory):
    """Two patterns: Arrays & Hashing (4 questions) and Two Pointers (3 questions)."""
    async with session_factory() as session:
        arrays = Pattern(name="Arrays & Hashing", category="Foundations", importance_weight=3,
                         short_mental_model="Trade memory for lookups")
        two_pointers = Pattern(name="Two Pointers", category="Foundations", importance_weight=2,
                               short_mental_model="Shrink the window from both ends")
        session.add_all([arrays, two_pointers])
        await session.flush()

        questions = [
            Question(title="Two Sum", difficulty=Difficulty.Easy, order_index=1, pattern_id=arrays.id,
                     leetcode_url="https://leetcode.com/problems/two-sum/", time_minutes=15),
            Question(title="Group Anagrams", difficulty=Difficulty.Medium, order_index=2, pattern_id=arrays.id,
                     leetcode_url="https://leetcode.com/problems/group-anagrams/", time_minutes=25),
            Question(title="Top K Frequent Elements", difficulty=Difficulty.Medium, order_index=3,
                     pattern_id=arrays.id, time_minutes=25),
            Question(title="Longest Consecutive Sequence", difficulty=Difficulty.Hard, order_index=4,
                     pattern_id=arrays.id, time_minutes=35),
            Question(title="Valid Palindrome", difficulty=Difficulty.Easy, order_index=5,
                     pattern_id=two_pointers.id, time_minutes=15),
            Question(title="3Sum", difficulty=Difficulty.Medium, order_index=6,
                     pattern_id=two_pointers.id, time_minutes=30),
            Question(title="Trapping Rain Water", difficulty=Difficulty.Hard, order_index=7,
                     pattern_id=two_pointers.id, time_minutes=40),
        ]
        session.add_all(questions)
        await session.commit()

    return SimpleNamespace(
        arrays=arrays,
        two_pointers=two_pointers,
        questions={q.title: q for q in questions},
    )


async def _make_user(session_factory, **overrides) -> User:
    values = {
        "id": uuid4(),
        "email": "candidate@example.com",
        "name": "Candidate",
        "interview_target_days": 90,
        "current_readiness_days": 90.0,
    }
    values.update(overrides)
    async with session_factory() as session:
        user = User(**values)
        session.add(user)
        await session.commit()
    return user


@pytest_asyncio.fixture
async def user(session_factory):
    return await _make_user(session_factory)


@pytest_asyncio.fixture
async def other_user(session_factory):
    return await _make_user(session_factory, email="other@example.com", name="Other")


@pytest_asyncio.fixture
async def trial(session_factory, user):
    async with session_factory() as session:
        subscription = await subscription_service.grant_trial_if_needed(session, user.id)
        await session.commit()
    return subscription


@pytest.fixture
def complete_question(db):
    """start -> solution -> first recording, committed."""
    async def _complete(user, question, confidence=4, audio_url="https://cdn.test/audio.webm"):
        user_question = await user_question_service.start(db, user.id, question.id)
        await user_question_service.submit_solution(
            db, user.id, user_question.id, "def solve(nums):\n    return sorted(nums)", "python"
        )
        await db.commit()
        recording = await run_in_transaction(
            db, user_question_service.save_recording,
            user.id, user_question.id, audio_url, 95, confidence,
        )
        return user_question, recording

    return _complete


@pytest.fixture
def seed_done(session_factory):
    """Insert a DONE user question directly, optionally with pattern stats."""
    async def _seed(user, question, confidence, days_ago):
        done_at = datetime.utcnow() - timedelta(days=days_ago)
        async with session_factory() as session:
            user_question = UserQuestion(
                user_id=user.id,
                question_id=question.id,
                status=UserQuestionStatus.DONE,
                confidence_score=confidence,
                started_at=done_at - timedelta(minutes=30),
                done_at=done_at,
                solved_duration_seconds=1800,
            )
            session.add(user_question)
            await session.commit()
        return user_question

    return _seed


@pytest.fixture
def seed_stats(session_factory):
    async def _seed(user, pattern, attempted, completed, avg_confidence=0.0, last_practiced_at=None):
        async with session_factory() as session:
            stats = UserPatternStats(
                user_id=user.id,
                pattern_id=pattern.id,
                questions_attempted=attempted,
                questions_completed=completed,
                avg_confidence=avg_confidence,
                last_practiced_at=last_practiced_at,
            )
            session.add(stats)
            await session.commit()
        return stats

    return _seed


@pytest_asyncio.fixture
async def client(session_factory, user):
    """API client authenticated as `user`."""
    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_current_user():
        return user

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
