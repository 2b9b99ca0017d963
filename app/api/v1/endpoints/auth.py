from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, status
from app.api.deps import get_store
from app.models.auth import LoginRequest, Token
from app.core.config import settings
from app.core.security import verify_password, create_user_token
from app.core.logging import get_logger
from app.services.store import StudioStore

logger = get_logger(__name__)

router = APIRouter()


async def authenticate_user(store: StudioStore, username: str, password: str) -> dict | None:
    """
    Authenticate a user by username and password

    Returns:
        User row if authentication successful, None otherwise
    """
    user = await store.get_user_by_username(username)
    if not user:
        return None
    if not verify_password(password, user["password_hash"]):
        return None
    return user


@router.post("/login", response_model=Token)
async def login(credentials: LoginRequest, store: StudioStore = Depends(get_store)):
    """
    Authenticate user and return JWT token

    **Returns:**
    - `access_token`: JWT token for authentication
    - `token_type`: Always "bearer"
    - `expires_in`: Token expiration time in seconds
    """
    logger.info(f"Login attempt for user: {credentials.username}")

    user = await authenticate_user(store, credentials.username, credentials.password)
    if not user:
        logger.warning(f"Failed login attempt for: {credentials.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_user_token(user["id"], expires_delta=access_token_expires)

    logger.info(f"Successful login for user: {credentials.username}")

    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )
