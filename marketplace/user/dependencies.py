from dataclasses import dataclass, field
from typing import Dict, Optional, Set
import uuid
from fastapi import Depends, Request,HTTPException,status
from fastapi.security import HTTPBearer , http
from sqlalchemy.ext.asyncio import AsyncSession
from marketplace.auth.utils import decode_token
from marketplace.db.dependencies import get_session
from marketplace.schema.full_schema import ApprovalStatus, RoleName
from marketplace.user.repository import load_principal_rows
from marketplace.user.constants import logger


class Authentication(HTTPBearer):
    def __init__(self,auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> Optional[dict]:
        auth_creds: Optional[http.HTTPAuthorizationCredentials] = await super().__call__(request)
        if auth_creds is None:
            return None

        decoded_token = decode_token(auth_creds.credentials)
        if not decoded_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        return decoded_token


@dataclass
class Principal:
    """The authenticated caller and the capabilities its role rows grant."""

    user_id: int
    public_id: uuid.UUID
    email: str
    name: Optional[str]
    phone_number: Optional[str]
    roles: Set[RoleName] = field(default_factory=set)
    approval_status: Dict[RoleName, Optional[ApprovalStatus]] = field(default_factory=dict)

    def has_role(self, role: RoleName) -> bool:
        if role not in self.roles:
            return False
        if role == RoleName.ADMIN:
            return True
        return self.approval_status.get(role) == ApprovalStatus.APPROVED

    @property
    def is_admin(self) -> bool:
        return self.has_role(RoleName.ADMIN)


async def get_principal(request: Request, session: AsyncSession = Depends(get_session)) -> Principal:
    user_pid = getattr(request.state, "user_public_id", None)
    if not user_pid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    user, role_rows = await load_principal_rows(session, user_pid)
    if user is None:
        logger.warning("principal.user_not_found", extra={"user_public_id": user_pid, "path": request.url.path})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if user.is_suspended:
        logger.warning("principal.suspended", extra={"user_public_id": user_pid})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended")

    principal = Principal(
        user_id=user.id,
        public_id=user.public_id,
        email=user.email,
        name=user.name,
        phone_number=user.phone_number,
    )
    # an inactive role row grants nothing
    for row in role_rows:
        if row.is_active:
            principal.roles.add(row.role)
            principal.approval_status[row.role] = row.status

    request.state.user_identifier = user.id
    return principal


def require_role(role: RoleName):
    async def _checker(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(role):
            logger.info("principal.role_denied", extra={"user_public_id": str(principal.public_id), "role": role.value})
            label = role.value.lower()
            detail = "Admin access required" if role == RoleName.ADMIN else f"Approved {label} access required"
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return principal

    return _checker


require_admin = require_role(RoleName.ADMIN)
require_seller = require_role(RoleName.SELLER)
require_rider = require_role(RoleName.RIDER)
