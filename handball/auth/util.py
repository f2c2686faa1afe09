from __future__ import annotations

from typing import List, Optional, Tuple

DEFAULT_REDIRECT = "/"


def sanitize_next_path(next_path: str | None) -> str:
    """
    Prevent open-redirects: allow only relative paths like `/inbox`.
    """
    p = (next_path or "").strip()
    if not p:
        return DEFAULT_REDIRECT
    if not p.startswith("/"):
        return DEFAULT_REDIRECT
    # Disallow scheme-relative: `//evil.com` and `/\evil.com`
    if p.startswith("//") or p.startswith("/\\"):
        return DEFAULT_REDIRECT
    p = p.replace("\r", "").replace("\n", "")
    return p or DEFAULT_REDIRECT


def invitation_params(invitation: Optional[str], organization: Optional[str]) -> List[Tuple[str, str]]:
    """Invitation pass-through parameters, only when both are given."""
    if invitation is not None and organization is not None:
        return [("invitation", invitation), ("organization", organization)]
    return []
