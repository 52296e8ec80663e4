import hashlib
import hmac
import json
import time
from uuid import uuid4

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from rewind.database import get_session
from rewind.main import app
from rewind.s3_client import s3_client
from rewind.services.critique_service import critique_service
from rewind.services.payment_service import payment_service


@pytest.fixture
def ai_stub(monkeypatch, session_factory):
    class StubClient:
        async def generate_content(self, prompt, temperature=0.7, max_output_tokens=4000):
            return "Consider the time complexity of sorting each word."

        async def transcribe_audio(self, audio_url):
            return "First I sort every word, then I group them in a dictionary."

    monkeypatch.setattr(critique_service, "client", StubClient())
    monkeypatch.setattr(critique_service, "session_factory", session_factory)


async def _solve(client, question, confidence=4):
    started = await client.post(f"/api/v1/user-questions/{question.id}/start")
    assert started.status_code == 200
    user_question_id = started.json()["id"]

    solution = await client.post("/api/v1/solutions", json={
        "userQuestionId": user_question_id,
        "code": "def group(words): ...",
        "language": "python",
    })
    assert solution.status_code == 201
    assert solution.json()["nextStep"] == "RECORD_EXPLANATION"

    recording = await client.post("/api/v1/recordings", json={
        "userQuestionId": user_question_id,
        "audioUrl": "https://cdn.test/audio.webm",
        "durationSeconds": 120,
        "confidenceScore": confidence,
    })
    assert recording.status_code == 201
    return user_question_id, recording.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_catalog(client, catalog):
    questions = await client.get("/api/v1/questions")
    assert [q["title"] for q in questions.json()][:2] == ["Two Sum", "Group Anagrams"]

    page = await client.get("/api/v1/questions", params={"page": 1, "size": 3})
    body = page.json()
    assert body["totalElements"] == 7
    assert body["totalPages"] == 3
    assert [q["orderIndex"] for q in body["content"]] == [4, 5, 6]

    filtered = await client.get("/api/v1/questions", params={"patternId": str(catalog.two_pointers.id)})
    assert len(filtered.json()) == 3

    patterns = await client.get("/api/v1/patterns")
    assert [p["name"] for p in patterns.json()] == ["Arrays & Hashing", "Two Pointers"]


async def test_unknown_question_is_404(client, catalog):
    response = await client.get(f"/api/v1/questions/{catalog.arrays.id}")
    assert response.status_code == 404


async def test_practice_flow_updates_readiness(client, catalog):
    _, recording = await _solve(client, catalog.questions["Group Anagrams"])
    assert recording["version"] == 1
    assert recording["status"] == "SAVED"

    readiness = (await client.get("/api/v1/readiness")).json()
    assert readiness["daysRemaining"] == pytest.approx(89.27)
    assert readiness["targetDays"] == 90
    assert readiness["breakdown"]["mediumSolved"] == 1
    assert readiness["recentEvents"][0]["delta"] == pytest.approx(-0.73)

    status_map = (await client.get("/api/v1/user-questions/status-map")).json()
    assert status_map == {str(catalog.questions["Group Anagrams"].id): "DONE"}

    history = (await client.get(f"/api/v1/user-questions/{catalog.questions['Group Anagrams'].id}/history")).json()
    assert history["userQuestion"]["status"] == "DONE"
    assert len(history["recordings"]) == 1


async def test_recording_without_solution_is_rejected(client, catalog):
    started = await client.post(f"/api/v1/user-questions/{catalog.questions['Two Sum'].id}/start")

    response = await client.post("/api/v1/recordings", json={
        "userQuestionId": started.json()["id"],
        "audioUrl": "https://cdn.test/audio.webm",
        "confidenceScore": 3,
    })
    assert response.status_code == 400


async def test_free_revision_reads_without_subscription(client, catalog):
    await _solve(client, catalog.questions["Two Sum"], confidence=2)

    pending = await client.get("/api/v1/revisions/pending")
    assert pending.status_code == 200
    assert pending.json()["totalPending"] == 1
    assert pending.json()["revisions"][0]["reason"] == "LOW_CONFIDENCE"


async def test_premium_routes_need_subscription(client, catalog):
    response = await client.get("/api/v1/analytics/streak")

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "Subscription required"
    assert body["code"] == "SUBSCRIPTION_REQUIRED"
    assert body["message"]

    generate = await client.post("/api/v1/revisions/generate")
    assert generate.status_code == 402


async def test_premium_routes_with_trial(client, catalog, trial):
    streak = await client.get("/api/v1/analytics/streak")
    assert streak.status_code == 200
    assert streak.json()["current"] == 0

    weekly = await client.get("/api/v1/analytics/weekly-progress", params={"days": 14})
    assert len(weekly.json()) == 14


async def test_analysis_runs_in_background(client, catalog, trial, ai_stub):
    _, recording = await _solve(client, catalog.questions["Group Anagrams"])

    analyze = await client.post(f"/api/v1/recordings/{recording['recordingId']}/analyze")
    assert analyze.status_code == 202
    assert analyze.json()["analysisStatus"] == "PROCESSING"

    feedback = (await client.get(f"/api/v1/recordings/{recording['recordingId']}/feedback")).json()
    assert feedback["analysisStatus"] == "COMPLETED"
    assert {f["type"] for f in feedback["feedback"]} == {"HINT", "REFLECTION_QUESTION", "COMMUNICATION_TIP"}

    again = await client.post(f"/api/v1/recordings/{recording['recordingId']}/analyze")
    assert again.status_code == 202
    assert again.json()["analysisStatus"] == "COMPLETED"


async def test_reset_keeps_subscription(client, catalog, trial):
    await _solve(client, catalog.questions["Two Sum"])

    response = await client.delete("/api/v1/user-questions/reset")
    assert response.status_code == 204

    readiness = (await client.get("/api/v1/readiness")).json()
    assert readiness["daysRemaining"] == 90.0
    assert readiness["recentEvents"] == []
    assert (await client.get("/api/v1/user-questions")).json() == []

    subscription = (await client.get("/api/v1/subscription")).json()
    assert subscription["active"] is True
    assert subscription["plan"] == "TRIAL"


async def test_subscription_cancel(client, trial):
    response = await client.post("/api/v1/subscription/cancel")
    assert response.status_code == 200
    assert response.json()["success"] is True

    active = (await client.get("/api/v1/subscription/active")).json()
    assert active["active"] is True

    again = await client.post("/api/v1/subscription/cancel")
    assert again.status_code == 404


async def test_payment_endpoints(client, monkeypatch):
    class StubRazorpay:
        async def create_order(self, amount, currency, receipt, notes):
            return {"id": "order_api_1", "amount": amount, "currency": currency}

    monkeypatch.setattr(payment_service, "client", StubRazorpay())

    plans = (await client.get("/api/v1/payments/plans")).json()
    assert [p["id"] for p in plans] == ["MONTHLY", "QUARTERLY"]

    order = await client.post("/api/v1/payments/create-order", json={"plan": "MONTHLY"})
    assert order.status_code == 200
    assert order.json()["orderId"] == "order_api_1"
    assert order.json()["keyId"] == "rzp_test_key"

    bad = await client.post("/api/v1/payments/verify", json={
        "razorpayOrderId": "order_api_1",
        "razorpayPaymentId": "pay_1",
        "razorpaySignature": "forged",
    })
    assert bad.status_code == 400
    assert bad.json() == {"success": False, "error": "Invalid signature"}


async def test_verify_activates_plan(client, monkeypatch):
    class StubRazorpay:
        async def create_order(self, amount, currency, receipt, notes):
            return {"id": "order_api_2", "amount": amount, "currency": currency}

    monkeypatch.setattr(payment_service, "client", StubRazorpay())
    await client.post("/api/v1/payments/create-order", json={"plan": "QUARTERLY"})

    signature = hmac.new(b"test_key_secret", b"order_api_2|pay_2", hashlib.sha256).hexdigest()
    response = await client.post("/api/v1/payments/verify", json={
        "razorpayOrderId": "order_api_2",
        "razorpayPaymentId": "pay_2",
        "razorpaySignature": signature,
    })

    assert response.status_code == 200
    assert response.json()["subscription"]["plan"] == "QUARTERLY"
    status = (await client.get("/api/v1/subscription")).json()
    assert status["plan"] == "QUARTERLY"
    assert status["canUpgrade"] is False


async def test_webhook_signature_checked(client):
    body = json.dumps({"event": "payment.captured",
                       "payload": {"payment": {"entity": {"id": "pay_x", "order_id": "order_x"}}}}).encode()

    rejected = await client.post("/api/v1/webhooks/razorpay", content=body,
                                 headers={"X-Razorpay-Signature": "nope"})
    assert rejected.status_code == 401

    signature = hmac.new(b"test_webhook_secret", body, hashlib.sha256).hexdigest()
    accepted = await client.post("/api/v1/webhooks/razorpay", content=body,
                                 headers={"X-Razorpay-Signature": signature})
    assert accepted.status_code == 200
    assert accepted.json() == {"status": "ok"}


async def test_malformed_webhook_is_acknowledged(client):
    body = json.dumps({"event": "payment.captured", "payload": {}}).encode()
    signature = hmac.new(b"test_webhook_secret", body, hashlib.sha256).hexdigest()

    response = await client.post("/api/v1/webhooks/razorpay", content=body,
                                 headers={"X-Razorpay-Signature": signature})
    assert response.status_code == 200
    assert response.json() == {"status": "error logged"}


async def test_bearer_token_provisions_user(session_factory, catalog):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    token = jwt.encode(
        {"sub": str(uuid4()), "aud": "authenticated", "email": "new@example.com", "exp": int(time.time()) + 60},
        "test-jwt-secret",
        algorithm="HS256",
    )
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            readiness = await ac.get("/api/v1/readiness", headers={"Authorization": f"Bearer {token}"})
            subscription = await ac.get("/api/v1/subscription", headers={"Authorization": f"Bearer {token}"})
            forged = await ac.get("/api/v1/readiness", headers={"Authorization": "Bearer forged.token.value"})
    finally:
        app.dependency_overrides.clear()

    assert readiness.status_code == 200
    assert readiness.json()["daysRemaining"] == 90.0
    assert subscription.json()["plan"] == "TRIAL"
    assert forged.status_code == 401


async def test_upload_url(client, catalog, user, monkeypatch):
    class StubS3:
        def generate_presigned_url(self, operation, Params, ExpiresIn):
            return f"https://storage.test/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"

    monkeypatch.setattr(s3_client, "client", StubS3())
    started = await client.post(f"/api/v1/user-questions/{catalog.questions['Two Sum'].id}/start")
    user_question_id = started.json()["id"]

    response = await client.post("/api/v1/recordings/upload-url", json={"userQuestionId": user_question_id})

    assert response.status_code == 200
    body = response.json()
    assert body["audioPath"].startswith(f"recordings/{user.id}/{user_question_id}/v")
    assert body["audioPath"].endswith(".webm")
    assert body["uploadUrl"].endswith("?expires=300")
