import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Enum, DateTime, Text, Boolean, ForeignKey,
    Index, UniqueConstraint, Uuid, text,
)
from sqlalchemy.orm import relationship

from rewind.database import Base


class Difficulty(str, enum.Enum):
    Easy = "Easy"
    Medium = "Medium"
    Hard = "Hard"


class UserQuestionStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    STARTED = "STARTED"
    DONE = "DONE"


class AnalysisStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FeedbackType(str, enum.Enum):
    HINT = "HINT"
    REFLECTION_QUESTION = "REFLECTION_QUESTION"
    COMMUNICATION_TIP = "COMMUNICATION_TIP"


class RevisionReason(str, enum.Enum):
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    TIME_DECAY = "TIME_DECAY"
    PATTERN_WEAKNESS = "PATTERN_WEAKNESS"
    MANUAL = "MANUAL"


class SubscriptionPlan(str, enum.Enum):
    TRIAL = "TRIAL"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class User(Base):
    """
    Interview candidate.

    Table: rw_users
    The id is the identity provider's subject claim. `version` guards
    concurrent readiness updates (optimistic locking).
    """
    __tablename__ = "rw_users"

    id = Column(Uuid, primary_key=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    interview_target_days = Column(Integer, nullable=False, default=90)
    current_readiness_days = Column(Float, nullable=False, default=90.0)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class Pattern(Base):
    """
    Algorithmic technique (sliding window, two pointers...). Seeded.

    Table: rw_patterns
    """
    __tablename__ = "rw_patterns"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, unique=True)
    category = Column(String(100), nullable=True)
    importance_weight = Column(Integer, nullable=False, default=1)
    short_mental_model = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Question(Base):
    """
    Curated problem. Seeded, ordered by order_index.

    Table: rw_questions
    """
    __tablename__ = "rw_questions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(255), nullable=False)
    difficulty = Column(Enum(Difficulty), nullable=False)
    leetcode_url = Column(String(500), nullable=True)
    time_minutes = Column(Integer, nullable=True)
    order_index = Column(Integer, nullable=False, unique=True)
    pattern_id = Column(Uuid, ForeignKey("rw_patterns.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    pattern = relationship("Pattern", lazy="joined")


class UserQuestion(Base):
    """
    A user's progress on one question.

    Table: rw_user_questions
    Unique per (user_id, question_id).
    """
    __tablename__ = "rw_user_questions"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_rw_user_questions_user_question"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("rw_questions.id"), nullable=False)
    status = Column(Enum(UserQuestionStatus), nullable=False, default=UserQuestionStatus.NOT_STARTED)
    confidence_score = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=True)
    done_at = Column(DateTime, nullable=True)
    solved_duration_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    question = relationship("Question", lazy="joined")


class Solution(Base):
    """
    Submitted code for a user question. Append-only.

    Table: rw_solutions
    """
    __tablename__ = "rw_solutions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_question_id = Column(
        Uuid, ForeignKey("rw_user_questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = Column(Text, nullable=False)
    language = Column(String(50), nullable=False)
    leetcode_link = Column(String(500), nullable=True)
    is_optimal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class ExplanationRecording(Base):
    """
    Spoken explanation of a solution. Versions start at 1 per user question.

    Table: rw_explanation_recordings
    """
    __tablename__ = "rw_explanation_recordings"
    __table_args__ = (
        UniqueConstraint("user_question_id", "version", name="uq_rw_recordings_version"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_question_id = Column(
        Uuid, ForeignKey("rw_user_questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    audio_url = Column(String(1000), nullable=True)
    transcript = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow)
    analysis_status = Column(Enum(AnalysisStatus), nullable=False, default=AnalysisStatus.PENDING)


class AIFeedback(Base):
    """
    AI critique message. recording_id is null for legacy rows.

    Table: rw_ai_feedback
    """
    __tablename__ = "rw_ai_feedback"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_question_id = Column(
        Uuid, ForeignKey("rw_user_questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recording_id = Column(
        Uuid, ForeignKey("rw_explanation_recordings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    feedback_type = Column("type", Enum(FeedbackType), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class UserPatternStats(Base):
    """
    Per-(user, pattern) counters.

    Table: rw_user_pattern_stats
    """
    __tablename__ = "rw_user_pattern_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "pattern_id", name="uq_rw_pattern_stats_user_pattern"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    pattern_id = Column(Uuid, ForeignKey("rw_patterns.id"), nullable=False)
    questions_attempted = Column(Integer, nullable=False, default=0)
    questions_completed = Column(Integer, nullable=False, default=0)
    avg_confidence = Column(Float, nullable=False, default=0.0)
    last_practiced_at = Column(DateTime, nullable=True)


class ReadinessEvent(Base):
    """
    Append-only log of readiness changes. Negative delta = progress.

    Table: rw_readiness_events
    """
    __tablename__ = "rw_readiness_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    change_delta_days = Column(Float, nullable=False)
    reason = Column(String(500), nullable=False)
    related_question_id = Column(Uuid, ForeignKey("rw_questions.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RevisionSchedule(Base):
    """
    Pending spaced-repetition item.

    Table: rw_revision_schedules
    At most one open (completed_at IS NULL) row per user question.
    """
    __tablename__ = "rw_revision_schedules"
    __table_args__ = (
        Index(
            "uq_rw_revision_schedules_open",
            "user_question_id",
            unique=True,
            postgresql_where=text("completed_at IS NULL"),
            sqlite_where=text("completed_at IS NULL"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_question_id = Column(
        Uuid, ForeignKey("rw_user_questions.id", ondelete="CASCADE"), nullable=False
    )
    pattern_id = Column(Uuid, ForeignKey("rw_patterns.id"), nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    reason = Column(Enum(RevisionReason), nullable=False)
    priority_score = Column(Float, nullable=False, default=0.0)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user_question = relationship("UserQuestion", lazy="joined")


class RevisionSession(Base):
    """
    Completed revision. Exactly one per closed schedule.

    Table: rw_revision_sessions
    """
    __tablename__ = "rw_revision_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    revision_schedule_id = Column(
        Uuid, ForeignKey("rw_revision_schedules.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    listened_audio_version = Column(Integer, nullable=True)
    rerecorded = Column(Boolean, nullable=False, default=False)
    new_confidence_score = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Subscription(Base):
    """
    Trial or paid access window.

    Table: rw_subscriptions
    At most one ACTIVE row per user.
    """
    __tablename__ = "rw_subscriptions"
    __table_args__ = (
        Index(
            "uq_rw_subscriptions_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(Enum(SubscriptionPlan), nullable=False)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE)
    starts_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    auto_renew = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Payment(Base):
    """
    Razorpay order and its outcome.

    Table: rw_payments
    One row per Razorpay order id.
    """
    __tablename__ = "rw_payments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("rw_users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Uuid, ForeignKey("rw_subscriptions.id", ondelete="SET NULL"), nullable=True)
    amount_paise = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    razorpay_order_id = Column(String(100), nullable=True, unique=True)
    razorpay_payment_id = Column(String(100), nullable=True, index=True)
    razorpay_signature = Column(String(255), nullable=True)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    failure_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
