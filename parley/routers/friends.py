#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Friends API router - Friend requests, friendships, and friend management.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# get_friends: Retrieve the list of current friends.
# send_friend_request: Send a friend request to another user.
# get_friend_requests: Retrieve pending friend requests.
# accept_friend_request: Accept a pending friend request (creates the friendship).
# decline_friend_request: Decline a pending friend request.
# remove_friend: Unfriend a user and delete the conversation with them.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# router: FastAPI APIRouter instance.
# SendFriendRequestBody: Request model for sending friend requests.
# AcceptDeclineBody: Request model for accepting/declining requests.
# RemoveFriendBody: Request model for removing a friend.
# FriendListResponse: Response model for friend list.
# FriendRequestListResponse: Response model for friend requests.
# SuccessResponse: Generic success response model.
# RemoveFriendResponse: Success response that reports whether anything was removed.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# fastapi: API components.
# pydantic: Data validation.
# typing: Type hints.
# logging: Logging.
# parley.models.friend: Friend models.
# parley.dependencies: Service providers.
# parley.routers.auth: Auth dependencies.

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List
import logging

from parley.models.friend import FriendInfo, FriendRequestResponse
from parley.dependencies import get_graph
from parley.services.graph import GraphService
from parley.routers.auth import get_current_user, UserInfo


logger = logging.getLogger(__name__)
router = APIRouter()


class SendFriendRequestBody(BaseModel):
    to_user_id: str


class AcceptDeclineBody(BaseModel):
    request_id: str


class RemoveFriendBody(BaseModel):
    friend_id: str


class FriendListResponse(BaseModel):
    friends: List[FriendInfo]


class FriendRequestListResponse(BaseModel):
    requests: List[FriendRequestResponse]


class SuccessResponse(BaseModel):
    success: bool
    message: str = ""


class RemoveFriendResponse(SuccessResponse):
    removed: bool


@router.get("", response_model=FriendListResponse)
async def get_friends(
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    return FriendListResponse(friends=await graph.list_friends(current_user.uid))


@router.post("/request", response_model=SuccessResponse)
async def send_friend_request(
    body: SendFriendRequestBody,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    await graph.send_friend_request(current_user.uid, body.to_user_id)
    return SuccessResponse(success=True, message="Friend request sent")


@router.get("/requests", response_model=FriendRequestListResponse)
async def get_friend_requests(
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    return FriendRequestListResponse(requests=await graph.list_friend_requests(current_user.uid))


@router.post("/accept", response_model=SuccessResponse)
async def accept_friend_request(
    body: AcceptDeclineBody,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    await graph.accept_friend_request(current_user.uid, body.request_id)
    return SuccessResponse(success=True, message="Friend request accepted")


@router.post("/decline", response_model=SuccessResponse)
async def decline_friend_request(
    body: AcceptDeclineBody,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    await graph.decline_friend_request(current_user.uid, body.request_id)
    return SuccessResponse(success=True, message="Friend request declined")


@router.post("/remove", response_model=RemoveFriendResponse)
async def remove_friend(
    body: RemoveFriendBody,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    removed = await graph.remove_friend(current_user.uid, body.friend_id)
    if not removed:
        logger.info(f"Remove friend no-op: {current_user.uid} -> {body.friend_id}")
    return RemoveFriendResponse(
        success=True,
        removed=removed,
        message="Friend removed" if removed else "Not friends"
    )
