#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Profile API router - Own profile read/update, username availability and viewing other profiles.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# get_my_profile: Returns the caller's profile.
# update_my_profile: Writes username/name/bio/gender (username re-checked at write time).
# username_available: Form-time uniqueness check.
# get_profile: Public view of another user's profile.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# router: FastAPI APIRouter instance.
# UsernameAvailability: Response model for the availability check.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# fastapi: API components.
# pydantic: Data validation.
# parley.models.user: Profile models.
# parley.dependencies: Service providers.
# parley.routers.auth: Auth dependencies.

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from parley.models.user import UserProfile, ProfileUpdate, PublicProfile
from parley.dependencies import get_graph
from parley.services.graph import GraphService
from parley.routers.auth import get_current_user, UserInfo
from parley.constants import USERNAME_MAX_LENGTH

router = APIRouter()


class UsernameAvailability(BaseModel):
    username: str
    available: bool


@router.get("/me", response_model=UserProfile)
async def get_my_profile(
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    return await graph.get_profile(current_user.uid)


@router.put("/me", response_model=UserProfile)
async def update_my_profile(
    body: ProfileUpdate,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    return await graph.update_profile(current_user.uid, body)


@router.get("/username-available", response_model=UsernameAvailability)
async def username_available(
    username: str = Query(..., min_length=1, max_length=USERNAME_MAX_LENGTH),
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    available = await graph.check_username_unique(username, current_user.uid)
    return UsernameAvailability(username=username, available=available)


@router.get("/{user_id}", response_model=PublicProfile)
async def get_profile(
    user_id: str,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    profile = await graph.get_profile(user_id)
    return PublicProfile(**profile.model_dump(include=set(PublicProfile.model_fields)))
