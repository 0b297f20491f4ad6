# utils/auth.py
from typing import Optional
from fastapi import Header, HTTPException

from services.supabase_service import get_supabase_service

def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from 'Bearer <token>'"""
    if not authorization:
        return None

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency: the id of the Supabase user making the request.
    Raises 401 before any other work happens.
    """
    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user_id = await get_supabase_service().get_user_id_from_token(token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return user_id
