#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Authentication router - Firebase token verification and current-user dependencies.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# verify_firebase_token: Verify a Firebase ID token using Firebase Admin SDK.
# get_current_user: Dependency that verifies the Authorization header and returns the current user info.
# get_ws_user: Same for WebSocket connections (token query parameter).
# verify_token: Endpoint to verify a token and create the profile on first sign-in.
# get_me: Endpoint to get current authenticated user's identity.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.
# router: FastAPI APIRouter instance.
# TokenVerifyRequest: Pydantic model for token verification request body.
# UserInfo: Pydantic model for verified user information response.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# fastapi: Framework components (APIRouter, HTTPException, Depends, Header, Query).
# starlette.concurrency: concurrency utils.
# pydantic: Data validation.
# firebase_admin: Firebase SDK.
# firebase_admin.auth: Firebase Auth module.
# logging: Logging module.
# parley.dependencies: Service providers.
# parley.services.graph: Profile creation.

from fastapi import APIRouter, HTTPException, Depends, Header, Query, WebSocketException, status
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel
import firebase_admin
from firebase_admin import auth as firebase_auth
import logging

from parley.dependencies import get_graph
from parley.services.graph import GraphService

logger = logging.getLogger(__name__)

router = APIRouter()


class TokenVerifyRequest(BaseModel):
    id_token: str


class UserInfo(BaseModel):
    uid: str
    email: str = ""
    display_name: str = ""


async def verify_firebase_token(id_token: str) -> dict:
    try:
        decoded_token = await run_in_threadpool(firebase_auth.verify_id_token, id_token)

        return {
            "uid": decoded_token.get("uid"),
            "email": decoded_token.get("email", ""),
            "display_name": decoded_token.get("name", decoded_token.get("email", "").split("@")[0]),
        }
    except firebase_admin.exceptions.FirebaseError as e:
        logger.warning(f"Firebase token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    except Exception as e:
        logger.error(f"Token verification error: {e}")
        raise HTTPException(status_code=401, detail="Token verification failed")


async def _resolve_user(token: str, graph: GraphService) -> UserInfo:
    firebase_user = await verify_firebase_token(token)
    await graph.ensure_user(
        firebase_user["uid"],
        email=firebase_user["email"],
        display_name=firebase_user["display_name"]
    )
    return UserInfo(
        uid=firebase_user["uid"],
        email=firebase_user["email"],
        display_name=firebase_user["display_name"]
    )


async def get_current_user(
    authorization: str = Header(...),
    graph: GraphService = Depends(get_graph)
) -> UserInfo:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    return await _resolve_user(authorization[7:], graph)


async def get_ws_user(
    token: str = Query(..., min_length=1),
    graph: GraphService = Depends(get_graph)
) -> UserInfo:
    try:
        return await _resolve_user(token, graph)
    except HTTPException:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")


@router.post("/verify", response_model=UserInfo)
async def verify_token(request: TokenVerifyRequest, graph: GraphService = Depends(get_graph)):
    return await _resolve_user(request.id_token, graph)


@router.get("/me", response_model=UserInfo)
async def get_me(current_user: UserInfo = Depends(get_current_user)):
    return current_user
