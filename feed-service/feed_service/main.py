"""
FastAPI application for Feed Service
"""
from fastapi import FastAPI, Depends, HTTPException, Request, status, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import List, Optional
import logging

from .config import settings
from .backend_client import backend_client, get_backend_client, BackendClient
from .realtime import realtime_hub, get_realtime_hub, RealtimeHub
from .dependencies import (
    decode_session_token,
    get_current_user,
    get_current_user_optional,
    get_session_client,
)
from .analytics import load_feed_analytics
from .chat import CommunityChat, membership_role
from .comments import add_comment, load_threads
from .counters import CountCache, LikeController
from .cursor import decode_cursor, encode_cursor
from .errors import BackendError, friendly_message
from .pagination import FeedPager, FeedState
from .ranking import SortMode, sort_posts, trending_hashtags
from .suggestions import suggest_from_likes, suggest_profiles
from .schemas import (
    User,
    Comment,
    CommentCreate,
    FeedAnalytics,
    FeedPageResponse,
    LikeRequest,
    LikeResponse,
    Post,
    Profile,
    Suggestions,
    TrendingTag,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Feed Service...")

    await backend_client.start()
    logger.info("Backend client initialized")

    await realtime_hub.start()
    logger.info("Realtime hub started")

    logger.info(f"Feed Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down Feed Service...")

    await realtime_hub.stop()

    await backend_client.stop()

    logger.info("Feed Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Community Feed Service - keyset-paged feed, trending and suggestions over the backend platform",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.error(f"Backend error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": friendly_message(exc)},
    )


async def _page(pager: FeedPager, cursor: Optional[str], sort: SortMode) -> FeedPageResponse:
    """First page, or the page after ``cursor``, projected by ``sort``"""
    try:
        decoded = decode_cursor(cursor)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid cursor"
        )

    if decoded:
        pager.cursor = decoded
        items = await pager.load_more()
    else:
        items = await pager.load()

    if pager.state == FeedState.ERROR:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=friendly_message(pager.error),
        )

    return FeedPageResponse(
        items=sort_posts(items, sort),
        has_more=pager.has_more,
        next_cursor=encode_cursor(pager.cursor),
        sort=sort.value,
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(hub: RealtimeHub = Depends(get_realtime_hub)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "realtime_channels": hub.channel_count(),
    }


# Feed endpoints
@app.get(
    "/api/v1/feed",
    response_model=FeedPageResponse,
    tags=["Feed"],
    summary="Get feed page",
)
async def get_feed(
    hashtag: Optional[str] = Query(None, description="Only posts carrying this hashtag"),
    sort: SortMode = Query(SortMode.NEWEST, description="Projection applied to the page"),
    cursor: Optional[str] = Query(None, description="next_cursor of the previous page"),
    page_size: int = Query(
        settings.FEED_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Items per page"
    ),
    current_user: Optional[User] = Depends(get_current_user_optional),
    client: BackendClient = Depends(get_session_client),
):
    """
    Get a feed page

    - Newest first, keyset-paged on created_at
    - Community posts only from communities the caller belongs to
    - has_more is true when the page came back full
    """
    pager = FeedPager(
        client,
        current_user.id if current_user else None,
        hashtag=hashtag,
        page_size=page_size,
    )
    return await _page(pager, cursor, sort)


@app.get(
    "/api/v1/communities/{community_id}/posts",
    response_model=FeedPageResponse,
    tags=["Feed"],
    summary="Get community posts page",
)
async def get_community_posts(
    community_id: str,
    sort: SortMode = Query(SortMode.NEWEST),
    cursor: Optional[str] = Query(None),
    page_size: int = Query(settings.COMMUNITY_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    client: BackendClient = Depends(get_session_client),
):
    pager = FeedPager(client, community_id=community_id, page_size=page_size)
    return await _page(pager, cursor, sort)


@app.get(
    "/api/v1/feed/suggestions",
    response_model=Suggestions,
    tags=["Feed"],
    summary="Suggested hashtags and authors",
)
async def get_suggestions(
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    """Hashtags and authors that recur across the caller's recent likes"""
    try:
        return await suggest_from_likes(client, current_user.id)
    except BackendError:
        raise
    except Exception as e:
        logger.error(f"Error building suggestions for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build suggestions"
        )


@app.get(
    "/api/v1/feed/trending",
    response_model=List[TrendingTag],
    tags=["Feed"],
    summary="Trending hashtags",
)
async def get_trending(client: BackendClient = Depends(get_session_client)):
    return await trending_hashtags(client)


@app.get(
    "/api/v1/feed/analytics",
    response_model=FeedAnalytics,
    tags=["Feed"],
    summary="Engagement statistics",
)
async def get_analytics(
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    try:
        return await load_feed_analytics(client, current_user.id)
    except BackendError:
        raise
    except Exception as e:
        logger.error(f"Error computing analytics for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute feed analytics"
        )


@app.get(
    "/api/v1/profiles/suggested",
    response_model=List[Profile],
    tags=["Profiles"],
    summary="Profiles to follow",
)
async def get_suggested_profiles(
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    """People followed by the people the caller follows"""
    try:
        return await suggest_profiles(client, current_user.id)
    except BackendError:
        raise
    except Exception as e:
        logger.error(f"Error suggesting profiles for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to suggest profiles"
        )


# Interaction endpoints
async def _like_controller(client: BackendClient, user: User, post_id: str) -> LikeController:
    rows = await (
        client.table("posts")
        .select("id,user_id,created_at,likes_count,comments_count")
        .eq("id", post_id)
        .is_("hidden_at", None)
        .limit(1)
        .execute()
    )
    if not rows:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found"
        )

    counts = CountCache()
    counts.track([Post.model_validate(rows[0])])
    controller = LikeController(client, user.id, counts)
    await controller.load_state([post_id])
    return controller


def _like_response(controller: LikeController, post_id: str, ok: bool) -> LikeResponse:
    if not ok:
        notices = controller.notifier.drain()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=notices[-1][1] if notices else "Like failed",
        )
    return LikeResponse(
        post_id=post_id,
        liked=controller.is_liked(post_id),
        likes_count=controller.counts.get(post_id).likes,
        color=controller.liked.get(post_id),
    )


@app.post(
    "/api/v1/posts/{post_id}/like",
    response_model=LikeResponse,
    tags=["Interactions"],
)
async def like_post(
    post_id: str,
    request: Optional[LikeRequest] = None,
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    controller = await _like_controller(client, current_user, post_id)
    ok = await controller.like(post_id, request.color if request else None)
    return _like_response(controller, post_id, ok)


@app.delete(
    "/api/v1/posts/{post_id}/like",
    response_model=LikeResponse,
    tags=["Interactions"],
)
async def unlike_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    controller = await _like_controller(client, current_user, post_id)
    ok = await controller.unlike(post_id)
    return _like_response(controller, post_id, ok)


@app.get(
    "/api/v1/posts/{post_id}/comments",
    response_model=List[Comment],
    tags=["Interactions"],
)
async def get_comments(
    post_id: str,
    client: BackendClient = Depends(get_session_client),
):
    return await load_threads(client, post_id)


@app.post(
    "/api/v1/posts/{post_id}/comments",
    response_model=Comment,
    status_code=status.HTTP_201_CREATED,
    tags=["Interactions"],
)
async def create_comment(
    post_id: str,
    payload: CommentCreate,
    current_user: User = Depends(get_current_user),
    client: BackendClient = Depends(get_session_client),
):
    comment = await add_comment(
        client,
        post_id,
        current_user.id,
        payload.content,
        parent_id=payload.parent_id,
    )
    if comment is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Comment cannot be empty"
        )
    return comment


# Realtime chat
@app.websocket("/ws/communities/{community_id}/chat")
async def community_chat_socket(
    websocket: WebSocket,
    community_id: str,
    token: Optional[str] = Query(None),
    backend: BackendClient = Depends(get_backend_client),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    """
    Community chat over a WebSocket

    Sends the history first, then every appended or removed message.
    Accepts {"action": "send", "content": ...} and
    {"action": "delete", "message_id": ...}.
    """
    try:
        user = decode_session_token(token or "")
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    client = backend.with_token(token)

    async def forward_append(message):
        await websocket.send_json({"type": "message", "data": message.model_dump(mode="json")})

    async def forward_remove(message_id: str):
        await websocket.send_json({"type": "removed", "id": message_id})

    chat = CommunityChat(client, hub, community_id, on_append=forward_append, on_remove=forward_remove)
    history = await chat.load_history()
    await websocket.send_json({
        "type": "history",
        "data": [message.model_dump(mode="json") for message in history],
    })
    chat.subscribe()

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                logger.warning(f"Malformed chat frame from user {user.id}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"Unknown chat frame: {data!r}")
                continue
            action = data.get("action")

            if action == "send":
                await chat.send(user.id, data.get("content", ""))
            elif action == "delete":
                try:
                    role = await membership_role(client, community_id, user.id)
                except BackendError as e:
                    chat.notifier.report(e, "Failed to delete message")
                else:
                    await chat.delete(data.get("message_id", ""), role)
            else:
                logger.warning(f"Unknown chat action: {action}")

            for level, message in chat.notifier.drain():
                await websocket.send_json({"type": "toast", "level": level, "message": message})

    except WebSocketDisconnect:
        logger.info(f"Chat socket closed for user {user.id} in community {community_id}")
    finally:
        chat.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "feed_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
