import json
import time
from uuid import UUID, uuid4

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from rewind import dependencies
from rewind.exceptions import AuthenticationError
from rewind.jwks import JWKSCache
from rewind.models import SubscriptionPlan, SubscriptionStatus
from rewind.services.subscription_service import subscription_service
from rewind.services.user_service import profile_from_claims, user_service

SECRET = "test-jwt-secret"


def claims(**overrides):
    payload = {
        "sub": str(uuid4()),
        "aud": "authenticated",
        "email": "dev@example.com",
        "exp": int(time.time()) + 300,
        "user_metadata": {"full_name": "Dev Candidate"},
    }
    payload.update(overrides)
    return payload


class FakeJWKSClient:
    def __init__(self, keys):
        self.keys = keys
        self.fetches = 0
        self.fail = False

    async def fetch_jwks(self, url):
        self.fetches += 1
        if self.fail:
            raise httpx.ConnectError("identity provider down")
        return {"keys": self.keys}


@pytest.fixture(scope="module")
def rsa_key():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": "key-1", "alg": "RS256", "use": "sig"})
    return private_key, jwk


async def test_hs256_token():
    payload = claims()
    token = jwt.encode(payload, SECRET, algorithm="HS256")

    decoded = await dependencies.decode_token(token)

    assert decoded["sub"] == payload["sub"]


@pytest.mark.parametrize("token", [
    jwt.encode(claims(exp=int(time.time()) - 10), SECRET, algorithm="HS256"),
    jwt.encode(claims(), "some-other-secret", algorithm="HS256"),
    jwt.encode(claims(aud="anon"), SECRET, algorithm="HS256"),
    "not-a-jwt",
])
async def test_rejected_tokens(token):
    with pytest.raises(AuthenticationError):
        await dependencies.decode_token(token)


async def test_rs256_token_via_jwks(rsa_key, monkeypatch):
    private_key, jwk = rsa_key
    client = FakeJWKSClient([jwk])
    cache = JWKSCache(client=client, ttl_seconds=3600, min_refresh_seconds=30)
    monkeypatch.setattr(dependencies, "jwks_cache", cache)

    payload = claims()
    token = jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": "key-1"})

    assert (await dependencies.decode_token(token))["sub"] == payload["sub"]
    assert (await dependencies.decode_token(token))["sub"] == payload["sub"]
    assert client.fetches == 1

    unknown = jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": "key-2"})
    with pytest.raises(AuthenticationError):
        await dependencies.decode_token(unknown)
    assert client.fetches == 1

    cache._attempted_at -= 60
    with pytest.raises(AuthenticationError):
        await dependencies.decode_token(unknown)
    assert client.fetches == 2


async def test_unknown_kids_refetch_at_most_once_per_interval(rsa_key):
    _, jwk = rsa_key
    client = FakeJWKSClient([jwk])
    cache = JWKSCache(client=client, ttl_seconds=3600, min_refresh_seconds=30)

    assert await cache.get_key("key-1") is not None
    for i in range(20):
        assert await cache.get_key(f"forged-{i}") is None
    assert client.fetches == 1
    assert await cache.get_key("key-1") is not None


async def test_jwks_keeps_old_keys_when_refresh_fails(rsa_key):
    _, jwk = rsa_key
    client = FakeJWKSClient([jwk])
    cache = JWKSCache(client=client, ttl_seconds=1, min_refresh_seconds=1)

    assert await cache.get_key("key-1") is not None

    client.fail = True
    cache._fetched_at -= 10  # stale
    cache._attempted_at -= 10
    assert await cache.get_key("key-1") is not None
    assert client.fetches == 2


def test_profile_from_claims():
    assert profile_from_claims({"email": "a@b.c", "user_metadata": {"name": "A"}}) == {"email": "a@b.c", "name": "A"}
    assert profile_from_claims({}) == {"email": "unknown@example.com", "name": None}


async def test_first_request_provisions_user_with_trial(db):
    payload = claims()
    user_id = UUID(payload["sub"])

    user = await user_service.get_or_create(db, user_id, payload)
    again = await user_service.get_or_create(db, user_id, payload)

    assert again is user
    assert user.email == "dev@example.com"
    assert user.name == "Dev Candidate"
    assert user.current_readiness_days == 90.0

    subscription = await subscription_service.get_active(db, user_id)
    assert subscription.plan == SubscriptionPlan.TRIAL
    assert subscription.status == SubscriptionStatus.ACTIVE
