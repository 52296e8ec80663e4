import httpx
import pytest
from sqlalchemy import select

from rewind.exceptions import AuthorizationError
from rewind.models import AIFeedback, AnalysisStatus, ExplanationRecording, FeedbackType
from rewind.services.critique_service import CritiqueService
from rewind.services.prompt_builder import PromptBuilder


class FakeAIClient:
    def __init__(self, transcript="I used a hash map keyed by sorted letters to group words.", fail=False,
                 transcribe_fail=False):
        self.transcript = transcript
        self.fail = fail
        self.transcribe_fail = transcribe_fail
        self.prompts = []
        self.transcribed = []

    async def generate_content(self, prompt, temperature=0.7, max_output_tokens=4000):
        if self.fail:
            raise httpx.ConnectError("model unavailable")
        self.prompts.append(prompt)
        return f"feedback #{len(self.prompts)}"

    async def transcribe_audio(self, audio_url):
        self.transcribed.append(audio_url)
        if self.transcribe_fail:
            raise httpx.ConnectError("whisper down")
        return self.transcript


async def _claim(db, service, user, recording):
    claimed = await service.request_analysis(db, user.id, recording.id)
    await db.commit()
    return claimed


async def _load(session_factory, recording_id):
    async with session_factory() as session:
        recording = await session.get(ExplanationRecording, recording_id)
        feedback = (await session.execute(
            select(AIFeedback).where(AIFeedback.recording_id == recording_id).order_by(AIFeedback.created_at)
        )).scalars().all()
    return recording, feedback


def test_placeholders_are_replaced():
    prompt = PromptBuilder.build_reflection_prompt("Two Sum", "Arrays & Hashing")
    assert "Two Sum" in prompt
    assert "Arrays & Hashing" in prompt
    assert "{{" not in prompt


async def test_full_analysis(db, catalog, user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Group Anagrams"])
    client = FakeAIClient()
    service = CritiqueService(client=client, session_factory=session_factory, max_concurrency=1)

    assert await _claim(db, service, user, recording) is True
    await service.process_recording(recording.id)

    stored, feedback = await _load(session_factory, recording.id)
    assert stored.analysis_status == AnalysisStatus.COMPLETED
    assert stored.transcript == client.transcript
    assert client.transcribed == ["https://cdn.test/audio.webm"]
    assert {f.feedback_type for f in feedback} == {
        FeedbackType.HINT, FeedbackType.REFLECTION_QUESTION, FeedbackType.COMMUNICATION_TIP,
    }
    assert "Group Anagrams" in client.prompts[0]
    assert "sorted(nums)" in client.prompts[0]


async def test_short_transcript_skips_communication_tip(db, catalog, user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Two Sum"])
    service = CritiqueService(client=FakeAIClient(transcript="um, hash map"), session_factory=session_factory)

    await _claim(db, service, user, recording)
    await service.process_recording(recording.id)

    stored, feedback = await _load(session_factory, recording.id)
    assert stored.analysis_status == AnalysisStatus.COMPLETED
    assert [f.feedback_type for f in feedback].count(FeedbackType.COMMUNICATION_TIP) == 0
    assert len(feedback) == 2


async def test_failure_is_recorded(db, catalog, user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Two Sum"])
    service = CritiqueService(client=FakeAIClient(fail=True), session_factory=session_factory)

    await _claim(db, service, user, recording)
    await service.process_recording(recording.id)

    stored, feedback = await _load(session_factory, recording.id)
    assert stored.analysis_status == AnalysisStatus.FAILED
    assert len(feedback) == 1
    assert feedback[0].feedback_type == FeedbackType.HINT
    assert feedback[0].message.startswith("Analysis Error:")


async def test_only_pending_recordings_are_claimed(db, catalog, user, other_user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Two Sum"])
    service = CritiqueService(client=FakeAIClient(), session_factory=session_factory)

    assert await _claim(db, service, user, recording) is True
    assert await _claim(db, service, user, recording) is False

    with pytest.raises(AuthorizationError):
        await service.request_analysis(db, other_user.id, recording.id)


async def test_get_feedback(db, catalog, user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Two Sum"])
    service = CritiqueService(client=FakeAIClient(), session_factory=session_factory)
    await _claim(db, service, user, recording)
    await service.process_recording(recording.id)

    async with session_factory() as session:
        result = await service.get_feedback(session, user.id, recording.id)

    assert result["recording_id"] == recording.id
    assert result["analysis_status"] == AnalysisStatus.COMPLETED
    assert len(result["feedback"]) == 3


async def test_failure_keeps_feedback_from_earlier_steps(db, catalog, user, session_factory, complete_question):
    _, recording = await complete_question(user, catalog.questions["Group Anagrams"])
    service = CritiqueService(client=FakeAIClient(transcribe_fail=True), session_factory=session_factory)

    await _claim(db, service, user, recording)
    await service.process_recording(recording.id)

    stored, feedback = await _load(session_factory, recording.id)
    assert stored.analysis_status == AnalysisStatus.FAILED
    assert stored.transcript is None
    assert [(f.feedback_type, f.message) for f in feedback[:2]] == [
        (FeedbackType.HINT, "feedback #1"),
        (FeedbackType.REFLECTION_QUESTION, "feedback #2"),
    ]
    assert feedback[2].feedback_type == FeedbackType.HINT
    assert feedback[2].message == "Analysis Error: whisper down"
    assert len(feedback) == 3
