import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from crit.api.responses import ConfigResponse, EventsResponse, SuccessResponse
from crit.errors import (
    CommentNotFound,
    FileNotFoundInSession,
    InvalidCommentRequest,
    SessionError,
)
from crit.event_manager import EventType
from crit.models import (
    Comment,
    CommentRequest,
    CommentUpdateRequest,
    DiffEntry,
    DiffHunk,
    FileSnapshot,
    PreviousRound,
    ReviewResult,
    SessionInfo,
    ShareRequest,
)
from crit.session import ReviewSession
from crit.status import Status

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 15.0


class ReviewWaiter:
    """Hands the reviewer's finished review to an agent waiting for it.

    A finish that happens before anyone waits is kept until the next wait
    picks it up or a new round starts.
    """

    def __init__(self) -> None:
        self._result: Optional[ReviewResult] = None
        self._ready = asyncio.Event()

    def deliver(self, result: ReviewResult) -> None:
        self._result = result
        self._ready.set()

    def reset(self) -> None:
        self._result = None
        self._ready.clear()

    async def wait(self, timeout: float) -> Optional[ReviewResult]:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        result = self._result
        self.reset()
        return result


@contextmanager
def session_errors() -> Iterator[None]:
    """Translate session errors into HTTP errors."""
    try:
        yield
    except (FileNotFoundInSession, CommentNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidCommentRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_api_router(
    session: ReviewSession,
    review_waiter: Optional[ReviewWaiter] = None,
    status: Optional[Status] = None,
    port: Optional[int] = None,
) -> APIRouter:
    """Create the review API for one session."""
    router = APIRouter()
    waiter = review_waiter or ReviewWaiter()

    @router.get("/api/session")
    def get_session() -> SessionInfo:
        return session.get_session_info()

    @router.get("/api/file")
    def get_file(path: str = Query(..., description="Session-relative file path")) -> FileSnapshot:
        with session_errors():
            return session.get_file_snapshot(path)

    @router.get("/api/file/diff")
    def get_file_diff(path: str = Query(...)) -> List[DiffHunk]:
        """Diff hunks for one file: baseline diff for code, round diff for markdown."""
        with session_errors():
            return session.get_file_diff(path)

    @router.get("/api/diff")
    def get_line_diff(path: str = Query(...)) -> List[DiffEntry]:
        with session_errors():
            return session.get_line_diff(path)

    @router.post("/api/file/dismiss-stale")
    def dismiss_stale(path: str = Query(...)) -> SuccessResponse[None]:
        with session_errors():
            session.clear_stale_notice(path)
        return SuccessResponse(message="Notice dismissed")

    @router.get("/api/comments")
    def get_comments(path: str = Query(...)) -> List[Comment]:
        with session_errors():
            return session.get_comments(path)

    @router.post("/api/comments", status_code=201)
    def create_comment(request: CommentRequest, path: str = Query(...)) -> Comment:
        with session_errors():
            return session.add_comment(
                path, request.start_line, request.end_line, request.body, side=request.side
            )

    @router.put("/api/comments/{comment_id}")
    def update_comment(comment_id: str, request: CommentUpdateRequest, path: str = Query(...)) -> Comment:
        with session_errors():
            return session.update_comment(path, comment_id, request.body)

    @router.delete("/api/comments/{comment_id}")
    def delete_comment(comment_id: str, path: str = Query(...)) -> SuccessResponse[None]:
        with session_errors():
            session.delete_comment(path, comment_id)
        return SuccessResponse(message="Comment deleted successfully")

    @router.get("/api/previous-round")
    def get_previous_round(path: str = Query(...)) -> PreviousRound:
        with session_errors():
            return session.get_previous_round(path)

    @router.post("/api/round-complete")
    async def round_complete() -> SuccessResponse[dict]:
        """Called by the agent once it has addressed the review."""
        waiter.reset()
        await asyncio.to_thread(session.signal_round_complete)
        return SuccessResponse(
            message="Round completion queued",
            data={"review_round": session.get_review_round()},
        )

    @router.post("/api/finish")
    async def finish() -> ReviewResult:
        """Called by the reviewer: write state now and release the waiting agent."""
        result = await asyncio.to_thread(session.finish, port)
        if status is not None:
            status.round_finished(result.review_round, result.comment_count)
            if result.comment_count:
                status.waiting_for_agent()
        logger.info("Review round %d finished with %d comments", result.review_round, result.comment_count)
        waiter.deliver(result)
        return result

    @router.get("/api/await-review")
    async def await_review(
        timeout: float = Query(3600.0, ge=0, description="Seconds to wait for the reviewer"),
    ) -> ReviewResult:
        result = await waiter.wait(timeout)
        if result is None:
            raise HTTPException(status_code=408, detail="Timed out waiting for review")
        return result

    @router.get("/api/events")
    async def stream_events(request: Request) -> StreamingResponse:
        """Server-sent events: edit-detected, state-changed, review-finished, server-shutdown."""
        subscriber = await session.events.subscribe()

        async def event_stream():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    events = await session.events.wait_for_events(
                        subscriber, timeout=SSE_KEEPALIVE_SECONDS
                    )
                    if not events:
                        yield ": keepalive\n\n"
                        continue
                    for event in events:
                        yield event.to_sse()
                    if any(e.type == EventType.SERVER_SHUTDOWN for e in events):
                        break
            finally:
                await session.events.unsubscribe(subscriber.id)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @router.get("/api/events/poll")
    async def poll_events(
        timeout: float = Query(30.0, ge=0, le=60, description="Long-polling timeout in seconds"),
    ) -> EventsResponse:
        """Long-polling alternative to the event stream."""
        subscriber = await session.events.subscribe()
        try:
            events = await session.events.wait_for_events(subscriber, timeout=timeout)
            return EventsResponse(
                events=[e.to_dict() for e in events],
                last_event_id=subscriber.last_event_id,
            )
        finally:
            await session.events.unsubscribe(subscriber.id)

    @router.post("/api/share-url")
    def set_share_url(request: ShareRequest) -> SuccessResponse[None]:
        if not request.url:
            raise HTTPException(status_code=400, detail="url is required")
        session.set_share(request.url, request.delete_token)
        return SuccessResponse(message="Share URL saved")

    @router.delete("/api/share-url")
    def clear_share_url() -> SuccessResponse[None]:
        session.clear_share()
        return SuccessResponse(message="Share URL cleared")

    @router.get("/api/config")
    def get_config() -> ConfigResponse:
        share_url, delete_token = session.get_share()
        return ConfigResponse(
            mode=session.mode.value,
            review_round=session.get_review_round(),
            state_file=str(session.state_path),
            share_url=share_url,
            delete_token=delete_token,
        )

    return router
