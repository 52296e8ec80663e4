from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rewind.models import (
    AnalysisStatus, Difficulty, FeedbackType, RevisionReason, UserQuestionStatus,
)


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============ Health ============

class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "rewind-api"


# ============ Catalog Schemas ============

class PatternResponse(CamelModel):
    id: UUID
    name: str
    category: Optional[str] = None
    importance_weight: int = 1
    short_mental_model: Optional[str] = None


class QuestionResponse(CamelModel):
    id: UUID
    title: str
    difficulty: Difficulty
    leetcode_url: Optional[str] = None
    time_minutes: Optional[int] = None
    order_index: int
    pattern: Optional[PatternResponse] = None


class QuestionPageResponse(CamelModel):
    content: List[QuestionResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int


# ============ User Question Schemas ============

class UserQuestionResponse(CamelModel):
    id: UUID
    question_id: UUID
    status: UserQuestionStatus
    confidence_score: Optional[int] = None
    started_at: Optional[datetime] = None
    done_at: Optional[datetime] = None
    solved_duration_seconds: Optional[int] = None
    question: Optional[QuestionResponse] = None


class SolutionItem(CamelModel):
    id: UUID
    code: str
    language: str
    leetcode_link: Optional[str] = None
    is_optimal: bool = False
    created_at: Optional[datetime] = None


class RecordingItem(CamelModel):
    id: UUID
    audio_url: Optional[str] = None
    transcript: Optional[str] = None
    duration_seconds: Optional[int] = None
    version: int
    recorded_at: Optional[datetime] = None
    analysis_status: AnalysisStatus


class HistoryResponse(CamelModel):
    user_question: UserQuestionResponse
    solutions: List[SolutionItem]
    recordings: List[RecordingItem]


# ============ Solution Schemas ============

class SolutionCreateRequest(CamelModel):
    user_question_id: UUID
    code: str = Field(..., min_length=1)
    language: str = Field(..., min_length=1, max_length=50)
    leetcode_submission_link: Optional[str] = Field(None, max_length=500)


class SolutionCreatedResponse(CamelModel):
    solution_id: UUID
    is_optimal: bool
    next_step: str = "RECORD_EXPLANATION"
    message: str = "Solution saved. Now record your explanation."


# ============ Recording Schemas ============

class UploadUrlRequest(CamelModel):
    user_question_id: UUID
    content_type: str = "audio/webm"
    duration_seconds: Optional[int] = Field(None, ge=0)


class UploadUrlResponse(CamelModel):
    upload_url: str
    audio_path: str
    expires_at: datetime


class RecordingCreateRequest(CamelModel):
    user_question_id: UUID
    audio_url: str = Field(..., min_length=1, max_length=1000)
    duration_seconds: Optional[int] = Field(None, ge=0)
    confidence_score: Optional[int] = Field(None, ge=1, le=5, description="Required on the first recording")


class RecordingCreatedResponse(CamelModel):
    recording_id: UUID
    version: int
    status: str = "SAVED"
    message: str = "Recording saved"


class AnalyzeResponse(CamelModel):
    recording_id: UUID
    analysis_status: AnalysisStatus
    message: str


class FeedbackItem(CamelModel):
    id: UUID
    type: FeedbackType
    message: str
    created_at: Optional[datetime] = None


class FeedbackResponse(CamelModel):
    recording_id: UUID
    analysis_status: AnalysisStatus
    feedback: List[FeedbackItem]


# ============ Revision Schemas ============

class RevisionQuestion(CamelModel):
    id: UUID
    title: str
    difficulty: str
    pattern_name: Optional[str] = None
    leetcode_url: Optional[str] = None


class LastRecording(CamelModel):
    id: UUID
    version: int
    audio_url: Optional[str] = None
    recorded_at: Optional[datetime] = None


class RevisionItem(CamelModel):
    schedule_id: UUID
    question: RevisionQuestion
    reason: RevisionReason
    priority_score: float
    scheduled_at: datetime
    last_recording: Optional[LastRecording] = None
    days_since_last_practice: Optional[int] = None


class PendingRevisionsResponse(CamelModel):
    revisions: List[RevisionItem]
    total_pending: int


class CompleteRevisionRequest(CamelModel):
    listened_version: Optional[int] = Field(None, ge=1)
    rerecorded: bool = False
    new_confidence_score: Optional[int] = Field(None, ge=1, le=5)


class CompleteRevisionResponse(CamelModel):
    session_id: UUID
    success: bool = True


# ============ Readiness Schemas ============

class ReadinessEventItem(CamelModel):
    delta: float
    reason: str
    created_at: Optional[datetime] = None


class ReadinessBreakdown(CamelModel):
    total_questions: int
    questions_solved: int
    easy_solved: int
    medium_solved: int
    hard_solved: int
    revisions_completed: int
    weak_patterns: List[str]


class ReadinessResponse(CamelModel):
    days_remaining: float
    target_days: int
    percent_complete: int
    trend: str
    breakdown: ReadinessBreakdown
    recent_events: List[ReadinessEventItem]


# ============ Analytics Schemas ============

class DailyCount(CamelModel):
    date: str
    count: int


class PatternProgressItem(CamelModel):
    pattern_id: UUID
    name: str
    category: Optional[str] = None
    completed: int
    total: int
    percent_complete: int


class StreakResponse(CamelModel):
    current: int
    longest: int
    total_completed: int
    last_active: Optional[str] = None


class AnalyticsSummaryResponse(CamelModel):
    weekly_progress: List[DailyCount]
    pattern_progress: List[PatternProgressItem]
    streak: StreakResponse


# ============ Subscription Schemas ============

class SubscriptionStatusResponse(CamelModel):
    active: bool
    plan: str
    status: Optional[str] = None
    days_remaining: int
    expires_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    is_trial: bool
    auto_renew: bool = False
    can_upgrade: bool
    price_monthly: int
    price_quarterly: int


class SubscriptionActiveResponse(CamelModel):
    active: bool
    days_remaining: int


class MessageResponse(CamelModel):
    success: bool = True
    message: str


# ============ Payment Schemas ============

class PlanItem(CamelModel):
    id: str
    name: str
    price: int
    amount: int
    duration: str
    description: str
    savings: Optional[str] = None
    popular: bool = False


class CreateOrderRequest(CamelModel):
    plan: str = Field(..., min_length=1)


class CreateOrderResponse(CamelModel):
    order_id: str
    amount: int
    currency: str
    key_id: str
    email: str
    user_id: UUID
    plan: str


class VerifyPaymentRequest(CamelModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class SubscriptionSummary(CamelModel):
    plan: str
    expires_at: datetime
    days_remaining: int


class VerifyPaymentResponse(CamelModel):
    success: bool
    message: str
    subscription: Optional[SubscriptionSummary] = None


class WebhookResponse(BaseModel):
    status: str


StatusMap = Dict[str, str]
ActivityMap = Dict[str, int]
