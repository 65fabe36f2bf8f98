"""
Tests for the FastAPI seam: require_permission dependencies and the
error envelope returned by the registered exception handlers.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from authz.dependencies import (
    get_current_user_id,
    get_permission_service,
    require_any_permission,
    require_permission,
)
from authz.domain.invariants import validate_not_last_super_admin
from authz.errors import ConflictError
from authz.main import create_app
from authz.services.permission_service import PermissionService


@pytest.fixture
def audit():
    sink = MagicMock()
    sink.log_event = AsyncMock()
    return sink


@pytest.fixture
def permission_service(audit):
    service = PermissionService(MagicMock(), cache=None, audit=audit)
    service.user_repo = MagicMock()
    service.user_repo.get_role = AsyncMock(return_value="VIEWER")
    return service


@pytest.fixture
def client(permission_service):
    app = create_app(with_lifespan=False)

    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        user_id = request.headers.get("x-user-id")
        if user_id is not None:
            request.state.user_id = user_id
        return await call_next(request)

    @app.get("/public-projects")
    async def public_projects(actor_id: uuid.UUID = Depends(require_permission("projects.view_public"))):
        return {"actor_id": str(actor_id)}

    @app.delete("/users/{user_id}")
    async def delete_user(user_id: uuid.UUID, actor_id: uuid.UUID = Depends(require_permission("users.delete"))):
        return {"deleted": str(user_id)}

    @app.get("/any")
    async def any_route(actor_id: uuid.UUID = Depends(require_any_permission("users.delete", "users.view_own"))):
        return {"ok": True}

    @app.get("/whoami")
    async def whoami(actor_id: uuid.UUID = Depends(get_current_user_id)):
        return {"actor_id": str(actor_id)}

    @app.post("/revoke-last")
    async def revoke_last():
        validate_not_last_super_admin(0, role_id="r1", action="revoke")

    @app.post("/duplicate")
    async def duplicate():
        raise IntegrityError("INSERT", {}, Exception("duplicate key"))

    @app.post("/conflict")
    async def conflict():
        raise ConflictError("Approval request was resolved concurrently", details={"request_id": "q1"})

    @app.get("/roles/{role_id}")
    async def get_role(role_id: uuid.UUID):
        return {"role_id": str(role_id)}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    app.dependency_overrides[get_permission_service] = lambda: permission_service
    return TestClient(app, raise_server_exceptions=False)


def headers(user_id=None):
    return {"x-user-id": str(user_id or uuid.uuid4())}


def test_allowed_route_returns_actor(client):
    user_id = uuid.uuid4()
    response = client.get("/public-projects", headers=headers(user_id))
    assert response.status_code == 200
    assert response.json() == {"actor_id": str(user_id)}


def test_denied_route_returns_403_envelope(client, audit):
    response = client.delete(f"/users/{uuid.uuid4()}", headers=headers())

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "PERMISSION_DENIED"
    assert error["details"] == {"missing_permissions": ["users.delete"]}
    assert audit.log_event.await_args.kwargs["action"] == "security.permission_denied"


def test_any_permission_passes_with_one_match(client):
    assert client.get("/any", headers=headers()).status_code == 200


def test_unknown_user_is_404(client, permission_service):
    permission_service.user_repo.get_role = AsyncMock(return_value=None)
    response = client.get("/public-projects", headers=headers())
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ROLE_NOT_FOUND"


def test_missing_identity_is_401(client):
    response = client.get("/public-projects")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_ERROR"


def test_malformed_identity_is_401(client):
    response = client.get("/whoami", headers={"x-user-id": "not-a-uuid"})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid authenticated user id"


def test_invariant_violation_is_409(client):
    response = client.post("/revoke-last")
    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "INVARIANT_VIOLATION"
    assert error["details"]["invariant"] == "INVARIANT-1.last_super_admin"
    assert error["details"]["action"] == "revoke"


def test_integrity_error_is_generic_409(client):
    response = client.post("/duplicate")
    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "CONFLICT_ERROR"
    assert "duplicate key" not in error["message"]


def test_app_error_keeps_details(client):
    response = client.post("/conflict")
    assert response.status_code == 409
    assert response.json()["error"]["details"] == {"request_id": "q1"}


def test_request_validation_is_422(client):
    response = client.get("/roles/not-a-uuid")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unhandled_exception_is_500_without_internals(client):
    response = client.get("/boom")
    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert "unexpected" not in error["message"]


def test_require_permission_needs_a_permission():
    with pytest.raises(ValueError, match="at least one permission"):
        require_permission()


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {
        "error": {"code": "NOT_FOUND", "message": "Resource not found", "details": None}
    }
