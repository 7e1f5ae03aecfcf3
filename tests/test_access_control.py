"""
Route ACL decisions, unit-level and through the HTTP stack.
"""

import pytest

from medtrack.api.access_control import check_access, compile_pattern, is_public
from medtrack.database.models import UserRole
from medtrack.security import Principal

REP = Principal(user_id=5, role=UserRole.REP)
MANAGER = Principal(user_id=6, role=UserRole.MANAGER)
ADMIN = Principal(user_id=7, role=UserRole.ADMIN)


# ── Pattern compilation ──────────────────────────────────────────────

def test_single_star_matches_exactly_one_segment():
    regex = compile_pattern("/api/users/by-location/*")

    assert regex.match("/api/users/by-location/3")
    assert not regex.match("/api/users/by-location/3/extra")


def test_double_star_matches_any_tail_including_none():
    regex = compile_pattern("/api/doctors/**")

    assert regex.match("/api/doctors")
    assert regex.match("/api/doctors/1")
    assert regex.match("/api/doctors/search/deep")
    assert not regex.match("/api/doctorsx")


def test_named_segment_is_captured():
    match = compile_pattern("/api/users/{id}/locations").match("/api/users/12/locations")

    assert match.group("id") == "12"


def test_auth_routes_are_public_except_me():
    assert is_public("POST", "/api/auth/login")
    assert is_public("POST", "/api/auth/register")
    assert not is_public("GET", "/api/auth/me")
    assert is_public("GET", "/health")


# ── Decisions ────────────────────────────────────────────────────────

@pytest.mark.parametrize("principal, method, path, allowed", [
    (REP, "GET", "/api/users/5/locations", True),
    (REP, "GET", "/api/users/9/locations", False),
    (MANAGER, "GET", "/api/users/9/locations", True),
    (REP, "GET", "/api/users/by-location/1", False),
    (MANAGER, "GET", "/api/users/by-location/1", True),
    (MANAGER, "PUT", "/api/users/9/locations", False),
    (ADMIN, "POST", "/api/users/9/locations/2", True),
    (REP, "GET", "/api/users/5", True),
    (REP, "GET", "/api/users/6", False),
    (MANAGER, "GET", "/api/users/6", False),
    (ADMIN, "GET", "/api/users/6", True),
    (MANAGER, "GET", "/api/users", False),
    (REP, "PUT", "/api/users/5", False),
    (REP, "GET", "/api/doctors/1", True),
    (REP, "POST", "/api/doctors", False),
    (MANAGER, "DELETE", "/api/products/1", False),
    (ADMIN, "POST", "/api/locations/bulk", True),
    (REP, "POST", "/api/visits/start", True),
    (REP, "DELETE", "/api/visits/1", False),
    (MANAGER, "DELETE", "/api/visits/1", True),
    (REP, "PUT", "/api/samples/1", True),
    (REP, "DELETE", "/api/samples/1", False),
    (MANAGER, "DELETE", "/api/samples/1", False),
    (ADMIN, "DELETE", "/api/samples/1", True),
    (REP, "PATCH", "/api/orders/1", True),
    (REP, "DELETE", "/api/orders/1", False),
    (REP, "GET", "/api/orders/reports/total-revenue", False),
    (REP, "GET", "/api/orders/reports/total-revenue/date-range", False),
    (REP, "GET", "/api/orders/reports/count-by-status/PENDING", False),
    (MANAGER, "GET", "/api/orders/reports/total-revenue", True),
    (REP, "GET", "/api/orders/reports/doctor/1/total-revenue", True),
    (MANAGER, "GET", "/api/dashboard/admin/stats", False),
    (ADMIN, "GET", "/api/dashboard/admin/stats", True),
])
def test_route_table(principal, method, path, allowed):
    assert check_access(principal, method, path) is allowed


# ── Over HTTP ────────────────────────────────────────────────────────

def test_missing_token_is_401(client):
    response = client.get("/api/doctors")

    assert response.status_code == 401
    assert response.json() == {"error": "Authentication token is missing"}


def test_bad_token_is_401(client):
    response = client.get("/api/doctors", headers={"Authorization": "Bearer nonsense"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


def test_role_denial_is_403(client, create_user):
    rep = create_user()

    response = client.post("/api/doctors", json={"name": "Dr. No"}, headers=rep.headers)

    assert response.status_code == 403
    assert response.json() == {"error": "Access denied"}


def test_public_endpoints_need_no_token(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["message"] == "MedTrack API"


def test_unknown_route_uses_error_body(client, admin):
    response = client.get("/api/nothing-here", headers=admin.headers)

    assert response.status_code == 404
    assert "error" in response.json()


def test_cors_allows_netlify_preview_origin(client):
    response = client.options(
        "/api/doctors",
        headers={
            "Origin": "https://preview-123.netlify.app",
            "Access-Control-Request-Method": "PATCH",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "https://preview-123.netlify.app"
    assert response.headers["access-control-allow-credentials"] == "true"


def test_cors_rejects_unknown_origin(client):
    response = client.options(
        "/api/doctors",
        headers={
            "Origin": "https://evil.example.com",
            "Access-Control-Request-Method": "GET",
        },
    )

    assert "access-control-allow-origin" not in response.headers
