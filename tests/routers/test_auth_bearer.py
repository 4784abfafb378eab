from datetime import timedelta
from typing import Any, AsyncIterator

import pytest
from chargebook.config import get_settings
from chargebook.deps import get_current_principal, get_session
from chargebook.domain.lifecycle import Principal
from chargebook.models import UserRole
from chargebook.utils.auth import create_access_token
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient


class DummySession:
    def __init__(self, role: UserRole | None) -> None:
        self.role = role

    async def scalar(self, *args: Any, **kwargs: Any) -> UserRole | None:
        return self.role

    async def rollback(self) -> None:
        return None


def _make_app(role: UserRole | None) -> TestClient:
    app = FastAPI()

    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession(role=role)

    app.dependency_overrides[get_session] = override_get_session

    @app.get("/protected")
    async def protected(principal: Principal = Depends(get_current_principal)) -> dict[str, Any]:
        return {"principal_id": principal.principal_id, "role": principal.role.value}

    return TestClient(app)


def _token(secret: str, *, expired: bool = False) -> str:
    delta = timedelta(seconds=-1) if expired else timedelta(minutes=30)
    return create_access_token(user_id=123, secret=secret, expires_delta=delta)


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SECRET", "testsecret")
    get_settings.cache_clear()


def test_protected_accepts_valid_token() -> None:
    client = _make_app(role=UserRole.OWNER)
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 200
    assert res.json() == {"principal_id": 123, "role": "owner"}


def test_protected_rejects_missing_header() -> None:
    client = _make_app(role=UserRole.OWNER)
    res = client.get("/protected")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate", "").lower().startswith("bearer")
    assert res.json()["detail"]["code"] == "unauthorized"


def test_protected_rejects_token_signed_with_other_secret() -> None:
    client = _make_app(role=UserRole.OWNER)
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('othersecret')}"})
    assert res.status_code == 401


def test_protected_rejects_expired_token() -> None:
    client = _make_app(role=UserRole.OWNER)
    token = _token("testsecret", expired=True)
    res = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_protected_rejects_when_user_not_found() -> None:
    client = _make_app(role=None)
    res = client.get("/protected", headers={"Authorization": f"Bearer {_token('testsecret')}"})
    assert res.status_code == 401
