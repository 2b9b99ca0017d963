from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.security import user_id_from_token
from app.models.auth import User
from app.services.batch_service import BatchService
from app.services.credits import CreditLedger
from app.services.presets import StyleResolver
from app.services.store import StudioStore
from app.core.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer()


def get_store(request: Request) -> StudioStore:
    return request.app.state.store


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_batch_service(request: Request) -> BatchService:
    return request.app.state.batch_service


def get_style_resolver(request: Request) -> StyleResolver:
    return request.app.state.style_resolver


def get_dispatcher(request: Request):
    return request.app.state.dispatcher


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: StudioStore = Depends(get_store),
) -> User:
    """
    Validate JWT token and return current user

    Args:
        credentials: HTTP Bearer token from request header
        store: Store holding the users table

    Returns:
        User object

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user_id = user_id_from_token(credentials.credentials)

    user = await store.get_user(user_id)
    if user is None:
        logger.warning(f"Unknown user in token: {user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(id=user["id"], username=user["username"], disabled=bool(user["disabled"]))


def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Ensure user is active (not disabled)

    Raises:
        HTTPException: If user is disabled
    """
    if current_user.disabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )
    return current_user
