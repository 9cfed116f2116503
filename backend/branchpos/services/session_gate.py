# Overview: Session state machine and the single allow/redirect authority.

"""
Session Gate

One explicit state machine decides, on every request or navigation, whether
the caller may proceed or where it must go instead. No other code path
redirects; the require_auth decorator and /api/session/navigate only render
what evaluate() returns.

States:
    UNAUTHENTICATED             no valid session
    PENDING_CREDENTIAL_CHANGE   logged in, must rotate the issued credential
    ACTIVE                      logged in, full access for the role
    BRANCH_CLOSED_BLOCKED       assigned branch is inactive; logout and exit only

Owners are never branch-blocked; they keep access to reactivate branches.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from ..permissions import Role


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    PENDING_CREDENTIAL_CHANGE = "PENDING_CREDENTIAL_CHANGE"
    ACTIVE = "ACTIVE"
    BRANCH_CLOSED_BLOCKED = "BRANCH_CLOSED_BLOCKED"


class SessionEvent(str, enum.Enum):
    LOGIN_SUCCEEDED = "LOGIN_SUCCEEDED"
    LOGIN_REQUIRES_CREDENTIAL_CHANGE = "LOGIN_REQUIRES_CREDENTIAL_CHANGE"
    LOGIN_BRANCH_INACTIVE = "LOGIN_BRANCH_INACTIVE"
    CREDENTIAL_CHANGED = "CREDENTIAL_CHANGED"
    BRANCH_DEACTIVATED = "BRANCH_DEACTIVATED"
    LOGOUT = "LOGOUT"


class InvalidTransition(Exception):
    def __init__(self, state: SessionState, event: SessionEvent):
        super().__init__(f"No transition from {state.value} on {event.value}")
        self.state = state
        self.event = event


TRANSITIONS: dict[tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.UNAUTHENTICATED, SessionEvent.LOGIN_SUCCEEDED): SessionState.ACTIVE,
    (SessionState.UNAUTHENTICATED, SessionEvent.LOGIN_REQUIRES_CREDENTIAL_CHANGE): SessionState.PENDING_CREDENTIAL_CHANGE,
    # Login is refused; no session exists in this state
    (SessionState.UNAUTHENTICATED, SessionEvent.LOGIN_BRANCH_INACTIVE): SessionState.BRANCH_CLOSED_BLOCKED,
    (SessionState.PENDING_CREDENTIAL_CHANGE, SessionEvent.CREDENTIAL_CHANGED): SessionState.ACTIVE,
    (SessionState.ACTIVE, SessionEvent.BRANCH_DEACTIVATED): SessionState.BRANCH_CLOSED_BLOCKED,
}


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """Apply one event. LOGOUT is accepted from every state."""
    if event == SessionEvent.LOGOUT:
        return SessionState.UNAUTHENTICATED
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


@dataclass(frozen=True)
class SessionSnapshot:
    """What the gate needs to know about the caller, re-read on every request."""
    authenticated: bool
    role: Role | None = None
    must_change_credential: bool = False
    branch_active: bool = True

    @classmethod
    def anonymous(cls) -> "SessionSnapshot":
        return cls(authenticated=False)


def resolve_state(snapshot: SessionSnapshot) -> SessionState:
    if not snapshot.authenticated:
        return SessionState.UNAUTHENTICATED
    if not snapshot.branch_active and snapshot.role != Role.OWNER:
        return SessionState.BRANCH_CLOSED_BLOCKED
    if snapshot.must_change_credential:
        return SessionState.PENDING_CREDENTIAL_CHANGE
    return SessionState.ACTIVE


LOGIN_PATH = "/login"
CHANGE_CREDENTIAL_PATH = "/change-password"
BRANCH_CLOSED_PATH = "/branch-closed"
HOME_PATH = "/app/dashboard"

PUBLIC_PATHS = frozenset({"/", "/login", "/register", "/api/auth/login", "/api/business/register"})
CREDENTIAL_CHANGE_PATHS = frozenset({CHANGE_CREDENTIAL_PATH, "/api/auth/change-credential"})
EXIT_PATHS = frozenset({"/logout", "/exit", "/api/auth/logout"})
STATUS_PATHS = frozenset({"/api/auth/session", "/api/session/navigate"})
BRANCH_CLOSED_PATHS = frozenset({BRANCH_CLOSED_PATH})

# Pages an active session is bounced away from
ACTIVE_REDIRECT_PATHS = frozenset({"/login", "/register", BRANCH_CLOSED_PATH})

# The only actions offered while branch-blocked
BLOCKED_ACTIONS = ("logout", "exit")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    state: SessionState
    target: str | None = None

    @classmethod
    def allow(cls, state: SessionState) -> "GateDecision":
        return cls(allowed=True, state=state)

    @classmethod
    def redirect(cls, state: SessionState, target: str) -> "GateDecision":
        return cls(allowed=False, state=state, target=target)

    def to_dict(self) -> dict:
        data = {
            "decision": "allow" if self.allowed else "redirect",
            "target": self.target,
            "state": self.state.value,
        }
        if self.state == SessionState.BRANCH_CLOSED_BLOCKED:
            data["actions"] = list(BLOCKED_ACTIONS)
        return data


def normalize_path(path: str | None) -> str:
    path = (path or "/").split("?", 1)[0].split("#", 1)[0].strip() or "/"
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def evaluate(snapshot: SessionSnapshot, path: str | None) -> GateDecision:
    """Decide allow or redirect(target) for one navigation or request."""
    state = resolve_state(snapshot)
    path = normalize_path(path)

    if state == SessionState.UNAUTHENTICATED:
        if path in PUBLIC_PATHS:
            return GateDecision.allow(state)
        return GateDecision.redirect(state, LOGIN_PATH)

    if state == SessionState.PENDING_CREDENTIAL_CHANGE:
        if path in CREDENTIAL_CHANGE_PATHS or path in EXIT_PATHS or path in STATUS_PATHS:
            return GateDecision.allow(state)
        return GateDecision.redirect(state, CHANGE_CREDENTIAL_PATH)

    if state == SessionState.BRANCH_CLOSED_BLOCKED:
        if path in BRANCH_CLOSED_PATHS or path in EXIT_PATHS or path in STATUS_PATHS:
            return GateDecision.allow(state)
        return GateDecision.redirect(state, BRANCH_CLOSED_PATH)

    if path in ACTIVE_REDIRECT_PATHS:
        return GateDecision.redirect(state, HOME_PATH)
    return GateDecision.allow(state)
