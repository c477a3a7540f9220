from __future__ import annotations
from typing import Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> Optional[int]:
    """Principal lookup for services: the JWT identity as int, or None outside an authenticated request."""
    try:
        ident = get_jwt_identity()
    except RuntimeError:
        # no request / no verified token in this context
        return None
    return int(ident) if ident is not None else None
