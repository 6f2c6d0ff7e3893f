from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class Session:
    """Holds at most one backend bearer token for one client.

    The token is opaque: it is never validated, never persisted, and its
    expiry is only discovered when the backend answers 401/403.
    """

    token: Optional[str] = field(default=None, repr=False)

    def set_token(self, token: str) -> None:
        self.token = token

    def clear_token(self) -> None:
        self.token = None

    def has_token(self) -> bool:
        return bool(self.token)

    def auth_header(self) -> Dict[str, str]:
        if not self.has_token():
            return {}
        return {"Authorization": f"Bearer {self.token}"}
