#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Conversations API router - Durable message history between friends.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# get_conversation: Messages exchanged with a friend, oldest first.
# send_conversation_message: Append a message to the conversation with a friend.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# router: FastAPI APIRouter instance.
# SendMessageBody: Request model for a new message.
# ConversationResponse: Response model for a conversation read.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# fastapi: API components.
# pydantic: Data validation.
# typing: Type hints.
# parley.models.friend: Message model.
# parley.dependencies: Service providers.
# parley.routers.auth: Auth dependencies.

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from typing import List

from parley.models.friend import Message
from parley.dependencies import get_graph
from parley.services.graph import GraphService
from parley.routers.auth import get_current_user, UserInfo
from parley.constants import CHAT_MESSAGE_MAX_LENGTH, CONVERSATION_PAGE_LIMIT

router = APIRouter()


class SendMessageBody(BaseModel):
    text: str = Field(..., min_length=1, max_length=CHAT_MESSAGE_MAX_LENGTH)


class ConversationResponse(BaseModel):
    friend_id: str
    messages: List[Message]


@router.get("/{friend_id}", response_model=ConversationResponse)
async def get_conversation(
    friend_id: str,
    limit: int = Query(CONVERSATION_PAGE_LIMIT, ge=1, le=CONVERSATION_PAGE_LIMIT),
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    messages = await graph.list_messages(current_user.uid, friend_id, limit=limit)
    return ConversationResponse(friend_id=friend_id, messages=messages)


@router.post("/{friend_id}", response_model=Message)
async def send_conversation_message(
    friend_id: str,
    body: SendMessageBody,
    current_user: UserInfo = Depends(get_current_user),
    graph: GraphService = Depends(get_graph)
):
    return await graph.send_message(current_user.uid, friend_id, body.text)
