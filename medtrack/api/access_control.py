"""
Route-pattern access control.

Every request passes through ``enforce_access`` (installed as an application
dependency). The first rule whose pattern and method match decides; routes
that match no rule only require a valid token. Ownership checks that depend
on the loaded rows (a REP touching someone else's visit) live next to the
handlers, see ``ensure_self_or_roles``.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medtrack.database.models import UserRole
from medtrack.exceptions import ForbiddenError, UnauthorizedError
from medtrack.security import Principal, decode_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

REP, MANAGER, ADMIN = UserRole.REP, UserRole.MANAGER, UserRole.ADMIN
ALL_ROLES = frozenset({REP, MANAGER, ADMIN})
ANY_METHOD = None
READ = frozenset({"GET", "HEAD"})
WRITE = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def compile_pattern(pattern: str) -> "re.Pattern":
    """Ant-style pattern: ``*`` one segment, ``**`` any tail, ``{name}`` a captured segment."""
    if pattern == "/":
        return re.compile(r"^/$")
    regex = ""
    for part in pattern.strip("/").split("/"):
        if part == "**":
            regex += r"(?:/.*)?"
        elif part == "*":
            regex += r"/[^/]+"
        elif part.startswith("{") and part.endswith("}"):
            regex += rf"/(?P<{part[1:-1]}>[^/]+)"
        else:
            regex += "/" + re.escape(part)
    return re.compile("^" + regex + "/?$")


@dataclass(frozen=True)
class AccessRule:
    pattern: str
    methods: Optional[FrozenSet[str]]
    roles: FrozenSet[UserRole] = frozenset()
    # roles allowed only when the {id} path segment is the caller's own id
    self_roles: FrozenSet[UserRole] = frozenset()
    public: bool = False
    regex: "re.Pattern" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "regex", compile_pattern(self.pattern))

    def match(self, method: str, path: str):
        if self.methods is not None and method not in self.methods:
            return None
        return self.regex.match(path)

    def allows(self, principal: Principal, path_match) -> bool:
        if principal.role in self.roles:
            return True
        if principal.role in self.self_roles:
            owner_id = path_match.groupdict().get("id")
            return owner_id is not None and owner_id == str(principal.user_id)
        return False


def rule(pattern, methods, roles=(), self_roles=(), public=False) -> AccessRule:
    return AccessRule(
        pattern=pattern,
        methods=frozenset(methods) if methods is not None else None,
        roles=frozenset(roles),
        self_roles=frozenset(self_roles),
        public=public,
    )


def _catalog_rules(prefix: str):
    return [
        rule(f"{prefix}/**", READ, ALL_ROLES),
        rule(f"{prefix}/**", WRITE, {ADMIN}),
    ]


ACCESS_RULES = [
    rule("/", ANY_METHOD, public=True),
    rule("/health", ANY_METHOD, public=True),
    rule("/docs/**", READ, public=True),
    rule("/openapi.json", READ, public=True),

    rule("/api/auth/me", ANY_METHOD, ALL_ROLES),
    rule("/api/auth/**", ANY_METHOD, public=True),

    rule("/api/users/{id}/locations", READ, {MANAGER, ADMIN}, self_roles={REP}),
    rule("/api/users/by-location/*", READ, {MANAGER, ADMIN}),
    rule("/api/users/*/locations/**", {"PUT", "POST", "DELETE"}, {ADMIN}),
    rule("/api/users/{id}", READ, {ADMIN}, self_roles={REP}),
    rule("/api/users/**", ANY_METHOD, {ADMIN}),

    *_catalog_rules("/api/locations"),
    *_catalog_rules("/api/doctors"),
    *_catalog_rules("/api/products"),

    rule("/api/visits/**", READ, ALL_ROLES),
    rule("/api/visits/**", {"POST", "PUT"}, ALL_ROLES),
    rule("/api/visits/**", {"DELETE"}, {MANAGER, ADMIN}),

    rule("/api/samples/**", READ, ALL_ROLES),
    rule("/api/samples/**", {"POST", "PUT"}, ALL_ROLES),
    rule("/api/samples/**", {"DELETE"}, {ADMIN}),

    rule("/api/orders/reports/total-revenue/**", READ, {MANAGER, ADMIN}),
    rule("/api/orders/reports/count-by-status/*", READ, {MANAGER, ADMIN}),
    rule("/api/orders/**", {"POST", "PUT", "PATCH"}, ALL_ROLES),
    rule("/api/orders/**", {"DELETE"}, {MANAGER, ADMIN}),

    rule("/api/dashboard/admin/**", ANY_METHOD, {ADMIN}),
]


def find_rule(method: str, path: str):
    """First matching rule and its match object, or (None, None)."""
    for access_rule in ACCESS_RULES:
        path_match = access_rule.match(method, path)
        if path_match is not None:
            return access_rule, path_match
    return None, None


def is_public(method: str, path: str) -> bool:
    access_rule, _ = find_rule(method, path)
    return access_rule is not None and access_rule.public


def check_access(principal: Principal, method: str, path: str) -> bool:
    """Whether an authenticated caller may reach ``method path``."""
    access_rule, path_match = find_rule(method, path)
    if access_rule is None or access_rule.public:
        return True
    return access_rule.allows(principal, path_match)


# ==================== DEPENDENCIES ====================

async def enforce_access(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    method = request.method.upper()
    path = request.url.path

    if is_public(method, path):
        return None

    if credentials is None:
        raise UnauthorizedError("Authentication token is missing")

    principal = decode_token(credentials.credentials)

    if not check_access(principal, method, path):
        logger.info("Access denied: %s %s for role %s", method, path, principal.role.value)
        raise ForbiddenError("Access denied")

    request.state.principal = principal
    return principal


async def get_current_principal(
    principal: Optional[Principal] = Depends(enforce_access),
) -> Principal:
    if principal is None:
        raise UnauthorizedError("Authentication token is missing")
    return principal


def ensure_self_or_roles(principal: Principal, user_id: int, *roles: UserRole) -> None:
    """Method-level ownership predicate: own rows, or one of ``roles``."""
    if principal.user_id == user_id or principal.role in roles:
        return
    raise ForbiddenError("Access denied")
