"""Caller profile: the contact used for lifecycle emails."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hodos.core.auth import Caller, get_current_caller
from hodos.features.users.service import get_or_create_profile


router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileResponse(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    church_id: Optional[str] = None
    subscription_id: Optional[str] = None


@router.get("", response_model=ProfileResponse)
def get_profile(caller: Caller = Depends(get_current_caller)):
    # Token contact fills a blank profile on first sight
    return ProfileResponse(**get_or_create_profile(caller.user_id, full_name=caller.full_name, email=caller.email))
