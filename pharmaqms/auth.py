# pharmaqms/auth.py

import hmac
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Optional

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class User:
    username: str
    full_name: str
    role: str = "user"
    department: str = "Quality Assurance"
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role.strip().lower() == ADMIN_ROLE

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "User":
        return cls(
            username=data["username"],
            full_name=data.get("full_name") or data.get("fullName") or data["username"],
            role=data.get("role", "user"),
            department=data.get("department", "Quality Assurance"),
            email=data.get("email", ""),
        )


# (user, secret) -> bool. Swap in a real identity provider check here.
CredentialVerifier = Callable[[User, str], bool]


class PasswordVerifier:
    """
    Checks a secret against a per-user password table, with an optional shared
    fallback password. Comparison is constant time.
    """

    def __init__(self, passwords: Optional[Dict[str, str]] = None, default_password: Optional[str] = None):
        self.passwords = dict(passwords or {})
        self.default_password = default_password

    def __call__(self, user: User, secret: str) -> bool:
        expected = self.passwords.get(user.username, self.default_password)
        if not expected or secret is None:
            return False
        return hmac.compare_digest(str(secret).encode("utf-8"), str(expected).encode("utf-8"))


class UserDirectory:
    """Known users, looked up by username at login."""

    def __init__(self, users: Iterable[User], verifier: CredentialVerifier):
        self._users = {u.username: u for u in users}
        self.verifier = verifier

    def get(self, username: str) -> Optional[User]:
        return self._users.get(username)

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = self._users.get(username)
        if user and self.verifier(user, password):
            return user
        return None

    def __iter__(self):
        return iter(self._users.values())
