from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, WebSocket, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    BRANCH_ADMIN = "BRANCH_ADMIN"
    USER = "USER"


@dataclass
class Principal:
    id: str
    role: Role
    company_id: str | None
    active: bool = True


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def get_websocket_principal(websocket: WebSocket) -> Principal | None:
    principal = getattr(websocket.state, "principal", None)
    if not principal or not principal.active:
        return None
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def assert_company_scope(principal: Principal, target_company_id: str) -> None:
    if principal.role == Role.ADMIN:
        return
    if principal.company_id != target_company_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)


def require_company(principal: Principal) -> str:
    if not principal.company_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No company associated with user")
    return principal.company_id
