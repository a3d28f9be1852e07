from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    FRONT_OFFICE = "FRONT_OFFICE"
    WAREHOUSE = "WAREHOUSE"


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    active: bool


def _session_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[len("bearer "):].strip() or None
    return request.cookies.get(settings.session_cookie_name)


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    from app.security.sessions import load_principal_from_token

    principal = load_principal_from_token(db, _session_token(request))
    db.commit()
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def can_approve_partial_shipment(role: Role) -> bool:
    return role in {Role.ADMIN, Role.MANAGER}


def can_authorize_unshipped(role: Role) -> bool:
    # Front office may release outstanding items; only managers approve partial shipments.
    return role in {Role.ADMIN, Role.MANAGER, Role.FRONT_OFFICE}


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
