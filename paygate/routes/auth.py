import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from paygate_common.utils import (
    Settings, SuccessResponse, NotFoundException, UnauthorizedException,
    create_access_token, get_password_hash, verify_password,
)

from paygate.dependencies import (
    get_revoked_tokens, get_settings, get_user_directory, require_token_payload,
)
from paygate.models import UserDB, UserProfile
from paygate.schemas import Token, UserLogin, UserRegister
from paygate.users import EmailAlreadyRegistered, RevokedTokenStore, UserDirectory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


@router.post("/auth/register", response_model=SuccessResponse[UserProfile], status_code=status.HTTP_201_CREATED)
async def register(user: UserRegister, users: UserDirectory = Depends(get_user_directory)):
    user_db = UserDB(
        email=user.email,
        password_hash=get_password_hash(user.password),
        full_name=user.full_name,
        phone=user.phone,
        address=user.address,
        city=user.city,
        postal_code=user.postal_code,
    )
    try:
        profile = await users.create_user(user_db)
    except EmailAlreadyRegistered:
        raise HTTPException(status_code=400, detail="Email already registered")

    logger.info("User registered", extra={"user_id": profile.id})
    return SuccessResponse(data=profile, message="User registered successfully")


@router.post("/auth/login", response_model=SuccessResponse[Token])
async def login(
    user_credentials: UserLogin,
    users: UserDirectory = Depends(get_user_directory),
    config: Settings = Depends(get_settings),
):
    user = await users.find_by_email(user_credentials.email)
    if not user or not verify_password(user_credentials.password, user.password_hash):
        raise UnauthorizedException("Incorrect email or password")

    expires_in = config.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    access_token = create_access_token(
        data={"sub": user.id},
        expires_delta=timedelta(seconds=expires_in),
        config=config,
    )
    return SuccessResponse(data=Token(access_token=access_token, token_type="bearer", expires_in=expires_in))


@router.post("/auth/logout", response_model=SuccessResponse[dict])
async def logout(
    payload: dict = Depends(require_token_payload),
    revoked_tokens: RevokedTokenStore = Depends(get_revoked_tokens),
):
    if "jti" in payload:
        await revoked_tokens.revoke(payload["jti"], datetime.fromtimestamp(payload["exp"], tz=timezone.utc).replace(tzinfo=None))
    return SuccessResponse(message="Successfully logged out")


@router.get("/profile", response_model=SuccessResponse[UserProfile])
async def get_profile(
    payload: dict = Depends(require_token_payload),
    users: UserDirectory = Depends(get_user_directory),
):
    profile = await users.get_user(payload["sub"])
    if not profile:
        raise NotFoundException("User not found")
    return SuccessResponse(data=profile)
