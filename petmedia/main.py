import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Request, Response, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from petmedia.config import get_settings
from petmedia.errors import NotFoundError, SubscriptionError, TransientBackendError, ValidationError
from petmedia.livesync import LiveSync, Subscription
from petmedia.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_data
from petmedia.map_spots import MapSpotStore
from petmedia.messages import MessageStore
from petmedia.metrics import get_metrics, get_metrics_content_type
from petmedia.storage import Backend
from petmedia.threads import ThreadStore
from petmedia.users import UserDirectory
from petmedia.schemas import (
    CreateMapSpotRequest,
    CreateThreadRequest,
    CreateThreadResponse,
    EnsureUserRequest,
    ErrorResponse,
    HealthResponse,
    MapSpot,
    MarkReadRequest,
    MarkReadResponse,
    MessageListResponse,
    SendFailureResponse,
    SendMessageRequest,
    SendMessageResponse,
    Thread,
    ThreadListResponse,
    UpdateProfileRequest,
    UserProfile,
)


# Setup structured JSON logging
setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: open the backend, create collections, wire the stores
    - Shutdown: close live subscriptions and the engine
    """
    settings = get_settings()
    backend = Backend(settings.DATABASE_URL)
    backend.init_db()

    users = UserDirectory(backend)
    threads = ThreadStore(backend, users, placeholder_name=settings.PLACEHOLDER_DISPLAY_NAME)
    messages = MessageStore(backend, threads, max_length=settings.MESSAGE_MAX_LENGTH)
    map_spots = MapSpotStore(backend)

    app.state.backend = backend
    app.state.users = users
    app.state.threads = threads
    app.state.messages = messages
    app.state.map_spots = map_spots
    app.state.livesync = LiveSync(backend, threads, messages, map_spots)
    try:
        yield
    finally:
        backend.close()


app = FastAPI(
    title="PetMedia API",
    description="Direct messaging, user directory and community map for PetMedia",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies & Error Mapping
# =============================================================================

def get_users(request: Request) -> UserDirectory:
    return request.app.state.users


def get_threads(request: Request) -> ThreadStore:
    return request.app.state.threads


def get_messages(request: Request) -> MessageStore:
    return request.app.state.messages


def get_map_spots(request: Request) -> MapSpotStore:
    return request.app.state.map_spots


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.warning(f"Rejected input on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(TransientBackendError)
async def transient_error_handler(request: Request, exc: TransientBackendError) -> JSONResponse:
    logger.error(f"Backend unavailable on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the database is reachable and
    every collection exists, otherwise 503.
    """
    if not request.app.state.backend.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# User Routes
# =============================================================================

@app.post("/users", response_model=UserProfile)
async def ensure_user(
    body: EnsureUserRequest,
    users: UserDirectory = Depends(get_users),
) -> UserProfile:
    """Register a signed-in user's profile; an existing profile is returned unchanged."""
    return users.ensure_user(body.id, email=body.email, display_name=body.display_name, photo_url=body.photo_url)


@app.get("/users", response_model=list[UserProfile])
async def list_users(
    exclude: Annotated[str | None, Query(description="User id to leave out, usually the caller")] = None,
    users: UserDirectory = Depends(get_users),
) -> list[UserProfile]:
    return users.list_users(exclude_user_id=exclude)


@app.get("/users/{user_id}", response_model=UserProfile, responses={404: {"model": ErrorResponse}})
async def get_user(user_id: str, users: UserDirectory = Depends(get_users)) -> UserProfile:
    profile = users.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
    return profile


@app.patch("/users/{user_id}", response_model=UserProfile, responses={404: {"model": ErrorResponse}})
async def update_user(
    user_id: str,
    body: UpdateProfileRequest,
    users: UserDirectory = Depends(get_users),
) -> UserProfile:
    return users.update_profile(user_id, **body.model_dump(exclude_none=True))


# =============================================================================
# Thread Routes
# =============================================================================

@app.post("/threads", response_model=CreateThreadResponse, responses={422: {"model": ErrorResponse}})
async def create_thread(
    request: Request,
    body: CreateThreadRequest,
    threads: ThreadStore = Depends(get_threads),
) -> CreateThreadResponse:
    """
    Open the conversation between two users, creating it on first contact.

    Repeated calls, from either side, resolve to the same thread id.
    """
    thread_id = threads.get_or_create(body.user_id, body.other_user_id)
    log_request_data(request, thread_id=thread_id)
    return CreateThreadResponse(thread_id=thread_id)


@app.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    user_id: Annotated[str, Query(min_length=1, description="Participant whose threads to list")],
    threads: ThreadStore = Depends(get_threads),
    messages: MessageStore = Depends(get_messages),
) -> ThreadListResponse:
    """
    List a user's threads, most recently active first.

    Each thread carries the number of messages the user has not read yet.
    """
    data = messages.with_unread_counts(threads.list_for_user(user_id), user_id)
    logger.info(f"GET /threads: returned {len(data)} threads for {user_id}")
    return ThreadListResponse(data=data, total=len(data))


@app.get("/threads/{thread_id}", response_model=Thread, responses={404: {"model": ErrorResponse}})
async def get_thread(thread_id: str, threads: ThreadStore = Depends(get_threads)) -> Thread:
    return _require_thread(threads, thread_id)


def _require_thread(threads: ThreadStore, thread_id: str) -> Thread:
    """The thread, or 404 for callers that address a thread id directly."""
    thread = threads.get_by_id(thread_id)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Thread {thread_id} not found")
    return thread


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/threads/{thread_id}/messages", response_model=MessageListResponse)
async def list_thread_messages(
    thread_id: str,
    threads: ThreadStore = Depends(get_threads),
    messages: MessageStore = Depends(get_messages),
) -> MessageListResponse:
    """Messages of a thread, oldest first."""
    _require_thread(threads, thread_id)
    data = messages.list_for_thread(thread_id)
    return MessageListResponse(data=data, total=len(data))


@app.post(
    "/threads/{thread_id}/messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"model": ErrorResponse, "description": "Sender is not a participant"},
        404: {"model": ErrorResponse, "description": "Unknown thread"},
        422: {"model": ErrorResponse, "description": "Empty or oversized text"},
        503: {"model": SendFailureResponse, "description": "Backend unavailable, text echoed for retry"},
    }
)
async def send_message(
    request: Request,
    thread_id: str,
    body: SendMessageRequest,
    threads: ThreadStore = Depends(get_threads),
    messages: MessageStore = Depends(get_messages),
):
    """
    Send a message to a thread.

    - 404 when the thread does not exist
    - 403 when the sender is not one of the two participants
    - 422 when the text is blank or longer than MESSAGE_MAX_LENGTH
    - 503 on backend failure; the body echoes the text so it can be resent
    """
    thread = _require_thread(threads, thread_id)
    if body.sender_id not in thread.participants:
        log_request_data(request, thread_id=thread_id, result="forbidden")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Sender is not a participant")

    try:
        message_id = messages.send(thread_id, body.sender_id, body.text)
    except TransientBackendError as e:
        logger.error(f"Send failed on {thread_id}: {e}")
        log_request_data(request, thread_id=thread_id, result="error")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=SendFailureResponse(detail=str(e), text=body.text).model_dump(),
        )

    log_request_data(request, thread_id=thread_id, message_id=message_id, result="sent")
    return SendMessageResponse(message_id=message_id)


@app.post(
    "/threads/{thread_id}/read",
    response_model=MarkReadResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Reader is not a participant"},
        404: {"model": ErrorResponse, "description": "Unknown thread"},
    }
)
async def mark_thread_read(
    request: Request,
    thread_id: str,
    body: MarkReadRequest,
    threads: ThreadStore = Depends(get_threads),
    messages: MessageStore = Depends(get_messages),
) -> MarkReadResponse:
    """Mark every message in the thread as read by the user. Idempotent."""
    thread = _require_thread(threads, thread_id)
    if body.user_id not in thread.participants:
        log_request_data(request, thread_id=thread_id, result="forbidden")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reader is not a participant")

    updated = messages.mark_read(thread_id, body.user_id)
    log_request_data(request, thread_id=thread_id, updated=updated)
    return MarkReadResponse(updated=updated)


# =============================================================================
# Map Spot Routes
# =============================================================================

@app.get("/map-spots", response_model=list[MapSpot])
async def list_map_spots(
    creator_id: Annotated[str | None, Query(description="Only spots added by this user")] = None,
    map_spots: MapSpotStore = Depends(get_map_spots),
) -> list[MapSpot]:
    if creator_id:
        return map_spots.list_for_user(creator_id)
    return map_spots.list_all()


@app.post("/map-spots", response_model=MapSpot, status_code=status.HTTP_201_CREATED)
async def create_map_spot(
    body: CreateMapSpotRequest,
    map_spots: MapSpotStore = Depends(get_map_spots),
) -> MapSpot:
    return map_spots.create(
        creator_id=body.creator_id,
        type=body.type.value,
        title=body.title,
        coords=body.coords,
        note=body.note,
        photo_url=body.photo_url,
    )


@app.post("/map-spots/{spot_id}/contribute", response_model=MapSpot, responses={404: {"model": ErrorResponse}})
async def contribute_to_map_spot(spot_id: str, map_spots: MapSpotStore = Depends(get_map_spots)) -> MapSpot:
    return map_spots.contribute(spot_id)


# =============================================================================
# Live Subscription Routes
# =============================================================================

async def _forward_snapshots(websocket: WebSocket, subscription: Subscription) -> None:
    try:
        async for snapshot in subscription:
            await websocket.send_json({
                "event": "snapshot",
                "data": [item.model_dump(mode="json") for item in snapshot],
            })
    except SubscriptionError as e:
        await websocket.send_json({"event": "error", "detail": str(e)})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    except WebSocketDisconnect:
        logger.debug(f"Client went away while sending {subscription.collection} snapshot")


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _serve_subscription(websocket: WebSocket, subscription: Subscription) -> None:
    """
    Push snapshots to the socket until either side goes away.

    The subscription is always closed on the way out so no watch outlives
    its connection.
    """
    forward = asyncio.create_task(_forward_snapshots(websocket, subscription))
    listen = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        subscription.close()
        for task in (forward, listen):
            task.cancel()


@app.websocket("/ws/threads/{thread_id}/messages")
async def watch_thread_messages(websocket: WebSocket, thread_id: str):
    await websocket.accept()
    livesync: LiveSync = websocket.app.state.livesync
    await _serve_subscription(websocket, livesync.open_messages(thread_id))


@app.websocket("/ws/users/{user_id}/threads")
async def watch_user_threads(websocket: WebSocket, user_id: str):
    await websocket.accept()
    livesync: LiveSync = websocket.app.state.livesync
    await _serve_subscription(websocket, livesync.open_threads(user_id))


@app.websocket("/ws/map-spots")
async def watch_map_spots(websocket: WebSocket):
    await websocket.accept()
    livesync: LiveSync = websocket.app.state.livesync
    await _serve_subscription(websocket, livesync.open_map_spots())


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
