from dataclasses import dataclass
from typing import FrozenSet

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth
from sqlalchemy.orm import Session

from app.db import get_db
from app.exceptions import UnauthorizedException, ForbiddenException
from app.models.user import User, UserRole, STAFF_ROLES
from app.utils.datetime import utc_now

security = HTTPBearer(auto_error=False)

# Test tokens for development (persisted on first use so FK constraints pass)
MOCK_USERS = {
    "mock-client-token": ("client-1", "Client One", "client@example.com", UserRole.client),
    "mock-instructor-token": ("instructor-1", "Instructor One", "instructor@example.com", UserRole.instructor),
    "mock-coach-token": ("coach-1", "Coach One", "coach@example.com", UserRole.coach),
    "mock-admin-token": ("admin-1", "Admin One", "admin@example.com", UserRole.admin),
}


@dataclass(frozen=True)
class Caller:
    """Identity the lifecycle operations act on behalf of."""
    id: str
    roles: FrozenSet[str]

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & STAFF_ROLES)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @classmethod
    def for_user(cls, user: User) -> "Caller":
        role = user.role.value if isinstance(user.role, UserRole) else str(user.role)
        return cls(id=user.id, roles=frozenset({role}))


def _role_from_claim(claim) -> UserRole:
    try:
        return UserRole(claim)
    except ValueError:
        return UserRole.client


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Authorization header missing or invalid")
    token = credentials.credentials

    if token in MOCK_USERS:
        uid, name, email, role = MOCK_USERS[token]
        user = db.query(User).filter(User.id == uid).first()
        if not user:
            user = User(id=uid, name=name, email=email, role=role, created_at=utc_now())
            db.add(user)
            db.commit()
            db.refresh(user)
        return user

    try:
        decoded_token = firebase_auth.verify_id_token(token)
        user_id = decoded_token["uid"]
        email = decoded_token["email"]
        full_name = decoded_token.get("name")
        if not full_name:
            full_name = (decoded_token.get("given_name", "") + " " + decoded_token.get("family_name", "")).strip()
        role_from_token = decoded_token.get("role")
    except Exception:
        raise UnauthorizedException("Invalid or expired Firebase token")

    user = db.query(User).filter(User.id == user_id).first()
    if user:
        return user

    user = User(
        id=user_id,
        email=email,
        name=full_name or email.split('@')[0].title(),
        role=_role_from_claim(role_from_token),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_caller(user: User = Depends(get_current_user)) -> Caller:
    return Caller.for_user(user)


def require_staff(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_staff:
        raise ForbiddenException("Instructor, coach or admin access required")
    return caller
