from dataclasses import dataclass
from typing import Optional

from merittrac.core.models import Role, UserProfile


@dataclass
class SessionState:
    uid: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None
    prn: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.uid and self.role)

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "SessionState":
        return cls(
            uid=profile.uid,
            email=profile.email,
            name=profile.name,
            role=profile.role,
            prn=profile.prn,
        )
