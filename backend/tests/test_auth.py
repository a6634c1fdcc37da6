import time

import httpx
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from repeet import auth

SECRET = "super-secret-jwt-token-for-tests"


@pytest.fixture(autouse=True)
def supabase_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)
    monkeypatch.delenv("SUPABASE_JWT_AUDIENCE", raising=False)


def make_token(**claims):
    payload = {
        "sub": "6f1c2f7e-7c5e-4a0b-9b1e-2f1f9d7c1a11",
        "email": "dev@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    payload = {key: value for key, value in payload.items() if value is not None}
    return jwt.encode(payload, SECRET, algorithm="HS256")


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
async def test_no_token_means_no_session():
    assert await auth.get_optional_current_user(None) is None


@pytest.mark.asyncio
async def test_valid_token_yields_user():
    user = await auth.get_optional_current_user(bearer(make_token()))

    assert user.sub == "6f1c2f7e-7c5e-4a0b-9b1e-2f1f9d7c1a11"
    assert user.email == "dev@example.com"
    assert user.role == "authenticated"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "claims",
    [
        {"aud": "someone-else"},
        {"exp": int(time.time()) - 60},
        {"sub": None},
    ],
)
async def test_rejected_tokens(claims):
    with pytest.raises(HTTPException) as excinfo:
        await auth.get_optional_current_user(bearer(make_token(**claims)))

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_token_signed_with_another_secret():
    token = jwt.encode({"sub": "x", "aud": "authenticated"}, "wrong-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as excinfo:
        await auth.get_optional_current_user(bearer(token))

    assert excinfo.value.status_code == 401


def mock_supabase(monkeypatch, handler):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        auth.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


@pytest.mark.asyncio
async def test_login_uses_password_grant(monkeypatch):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers.get("apikey")
        return httpx.Response(200, json={"access_token": "abc", "token_type": "bearer", "expires_in": 3600})

    mock_supabase(monkeypatch, handler)

    token_data = await auth.login_with_email_password("dev@example.com", "hunter2")

    assert token_data["access_token"] == "abc"
    assert seen["url"] == "https://project.supabase.co/auth/v1/token?grant_type=password"
    assert seen["apikey"] == "anon-key"


@pytest.mark.asyncio
async def test_login_with_bad_credentials(monkeypatch):
    mock_supabase(monkeypatch, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(HTTPException) as excinfo:
        await auth.login_with_email_password("dev@example.com", "wrong")

    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_sign_out_sends_the_access_token(monkeypatch):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["authorization"] = request.headers.get("authorization")
        return httpx.Response(204)

    mock_supabase(monkeypatch, handler)

    await auth.sign_out("abc")

    assert seen == {"path": "/auth/v1/logout", "authorization": "Bearer abc"}


@pytest.mark.asyncio
async def test_login_without_configuration(monkeypatch):
    monkeypatch.delenv("SUPABASE_ANON_KEY")

    with pytest.raises(HTTPException) as excinfo:
        await auth.login_with_email_password("dev@example.com", "hunter2")

    assert excinfo.value.status_code == 500
