from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from medremind.core.auth import create_access_token, get_current_user, hash_password, verify_password
from medremind.core.deps import get_pollers
from medremind.db.database import get_db
from medremind.db.models import User
from medremind.db.schema import LoginRequest, RegisterRequest, TokenResponse
from medremind.scheduling.poller import PollerRegistry
from medremind.users.directory import UserDirectory

router = APIRouter()


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    pollers: PollerRegistry = Depends(get_pollers),
):
    directory = UserDirectory(db)
    if await directory.find_by_email(payload.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already in use",
        )

    user = await directory.create_user(
        email=payload.email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )

    # Registering logs the user in, same as the login route
    await pollers.start(user.id)
    return TokenResponse(access_token=create_access_token(user_id=str(user.id), email=user.email))


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    pollers: PollerRegistry = Depends(get_pollers),
):
    user = await UserDirectory(db).find_by_email(payload.email)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    # Runs one poll right away, then every poll interval
    await pollers.start(user.id)
    return TokenResponse(access_token=create_access_token(user_id=str(user.id), email=user.email))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    current_user: User = Depends(get_current_user),
    pollers: PollerRegistry = Depends(get_pollers),
):
    # Cancels the poll loop and pending caretaker timers for this user
    await pollers.stop(current_user.id)
