from typing import Optional
from fastapi import Depends, Header, Request

from paygate_common.utils import Settings, UnauthorizedException, verify_token

from paygate.service import PaymentService
from paygate.users import RevokedTokenStore, UserDirectory

# --- Components (wired onto app.state in paygate.main) ---

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service

def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.users

def get_revoked_tokens(request: Request) -> RevokedTokenStore:
    return request.app.state.revoked_tokens

# --- Identity ---

async def get_token_payload(
    request: Request,
    authorization: Optional[str] = Header(None),
    config: Settings = Depends(get_settings),
    revoked_tokens: RevokedTokenStore = Depends(get_revoked_tokens),
) -> Optional[dict]:
    """
    Resolve the bearer token, or None when no Authorization header was sent.

    A header that is present but invalid, expired or revoked is rejected here
    with 401; a missing header is left for the service to reject.
    """
    if not authorization:
        return None

    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer" or not param:
        raise UnauthorizedException("Invalid authentication credentials")

    payload = verify_token(param, config)
    if "jti" in payload and await revoked_tokens.is_revoked(payload["jti"]):
        raise UnauthorizedException("Token has been revoked")

    request.state.user_id = payload["sub"]
    return payload

async def get_caller_id(payload: Optional[dict] = Depends(get_token_payload)) -> Optional[str]:
    return payload["sub"] if payload else None

async def require_token_payload(payload: Optional[dict] = Depends(get_token_payload)) -> dict:
    if payload is None:
        raise UnauthorizedException("Missing Authorization header")
    return payload
