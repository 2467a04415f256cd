# Overview: Resolves the calling identity forwarded by the upstream gateway.

"""
Caller Context

Authentication happens upstream. The gateway forwards the verified identity
as request headers:

    X-User-Id    opaque user id (required)
    X-User-Role  "admin" or "rep" (required)
    X-Rep-Id     rep id of the caller (optional; looked up by user id when absent)

SECURITY:
- A "rep" caller must map to an ACTIVE rep row, otherwise the request is
  treated as unauthenticated.
- Admins may act without a rep row.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Rep


ROLE_ADMIN = "admin"
ROLE_REP = "rep"
VALID_ROLES = (ROLE_ADMIN, ROLE_REP)


@dataclass(frozen=True)
class CallerContext:
    user_id: str
    role: str
    rep_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def resolve_caller(user_id: str | None, role: str | None, rep_id: str | None = None) -> CallerContext | None:
    """
    Build a CallerContext from gateway headers.

    Returns None when the identity is missing, malformed, or maps to no
    active rep.
    """
    user_id = (user_id or "").strip()
    role = (role or "").strip().lower()
    if not user_id or role not in VALID_ROLES:
        return None

    rep = None
    if rep_id not in (None, ""):
        try:
            rep = db.session.get(Rep, int(rep_id))
        except (TypeError, ValueError):
            return None
        if rep is None:
            return None
    else:
        rep = db.session.query(Rep).filter_by(user_id=user_id).first()

    if rep is not None and not rep.active:
        rep = None

    # A rep may only act as their own roster entry
    if role == ROLE_REP and rep is not None and rep.user_id != user_id:
        return None

    if role == ROLE_REP and rep is None:
        return None

    return CallerContext(user_id=user_id, role=role, rep_id=rep.id if rep else None)
