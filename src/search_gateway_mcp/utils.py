from datetime import datetime, timezone
from typing import Any
import json

DEFAULT_REPO_HOST = "https://github.com/"


def to_full_url(ref: str, host: str = DEFAULT_REPO_HOST) -> str:
    """Upgrade a short ``owner/name`` reference to a full repository URL.

    Anything already carrying a scheme passes through unchanged, so the
    function is idempotent. No other normalization is done: case, trailing
    slashes and ``.git`` suffixes are kept as given.
    """
    if ref.startswith("http"):
        return ref
    return f"{host}{ref}"


def to_short_form(ref: str) -> str:
    # Short form is never derived from a URL; callers pass owner/name.
    return ref


def to_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
