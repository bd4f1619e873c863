from typing import Iterable, List, Optional

from merittrac.core.errors import ValidationError
from merittrac.core.models import Role, UserProfile


def validate_signup(email: str, password: str, name: str, role: str, prn: Optional[str] = None) -> Role:
    if not email.strip() or not password or not name.strip() or not role:
        raise ValidationError("email, password, name and role are required")
    try:
        parsed = Role(role)
    except ValueError as exc:
        raise ValidationError(f"Unsupported role: {role}") from exc
    if parsed is Role.ADMIN:
        raise ValidationError("Cannot create admin account from sign up.")
    if parsed is Role.STUDENT and not (prn or "").strip():
        raise ValidationError("PRN is required for students.")
    return parsed


def search_users(users: Iterable[UserProfile], term: str) -> List[UserProfile]:
    needle = term.strip().lower()
    if not needle:
        return list(users)
    return [
        user
        for user in users
        if needle in user.name.lower()
        or needle in user.email.lower()
        or (user.prn and needle in user.prn.lower())
    ]
