"""API routes: JSON for linking wallets and driving study sessions."""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request

from studybot.core.config import get_settings
from studybot.core.errors import (
    AddressConflict,
    InvalidAddress,
    InvalidDuration,
    NoActiveSession,
    SessionAlreadyActive,
    StudyBotError,
    WalletNotLinked,
)
from studybot.schemas.session import (
    LinkAddressSchema,
    SessionOptionSchema,
    SessionOutSchema,
    StartSessionSchema,
    UserOutSchema,
    UserRecord,
)
from studybot.services.sessions import SessionService

router = APIRouter(prefix="/api", tags=["api"])
settings = get_settings()

ERROR_STATUS = {
    SessionAlreadyActive: 409,
    NoActiveSession: 409,
    AddressConflict: 409,
    WalletNotLinked: 404,
    InvalidDuration: 422,
    InvalidAddress: 422,
}


def get_sessions(request: Request) -> SessionService:
    return request.app.state.sessions


def _http_error(exc: StudyBotError) -> HTTPException:
    status = ERROR_STATUS.get(type(exc), 500)
    return HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})


def _user_out(record: UserRecord, service: SessionService) -> UserOutSchema:
    session = record.session
    if session is None:
        session_out = SessionOutSchema(status=record.status, generation=record.session_generation)
    else:
        session_out = SessionOutSchema(
            status=session.status,
            generation=session.generation,
            start_time=session.start_time,
            duration_minutes=session.duration_minutes,
            display_minutes=(
                service.settings.display_minutes(session.duration_minutes)
                if session.duration_minutes
                else None
            ),
            deadline=session.deadline,
        )
    return UserOutSchema(
        user_id=record.user_id,
        address=record.address,
        session=session_out,
        completed_session_count=record.completed_session_count,
        badges_issued=sorted(record.badges_issued, key=lambda t: t.ledger_index),
        history=record.history,
        last_settlement=service.last_settlement(record.user_id),
    )


async def _load_user(user_id: str, service: SessionService) -> UserOutSchema:
    record = await service.get_user(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_out(record, service)


@router.get("/session-options", response_model=list[SessionOptionSchema])
async def session_options():
    """Durations a session can be started with."""
    return [
        SessionOptionSchema(duration_minutes=d, display_minutes=settings.display_minutes(d))
        for d in settings.duration_options
    ]


@router.put("/users/{user_id}/address", response_model=UserOutSchema)
async def link_address(
    user_id: str,
    body: LinkAddressSchema,
    service: Annotated[SessionService, Depends(get_sessions)],
):
    """Link the user's ledger address (created by the onboarding flow)."""
    try:
        record = await service.link_address(user_id, body.address)
    except StudyBotError as exc:
        raise _http_error(exc)
    return _user_out(record, service)


@router.get("/users/{user_id}", response_model=UserOutSchema)
async def get_user(
    user_id: str,
    service: Annotated[SessionService, Depends(get_sessions)],
):
    """Current session, counters, badges and history."""
    return await _load_user(user_id, service)


@router.post("/users/{user_id}/session", response_model=UserOutSchema, status_code=201)
async def start_session(
    user_id: str,
    body: StartSessionSchema,
    service: Annotated[SessionService, Depends(get_sessions)],
):
    """Start a study session and arm its timers."""
    try:
        await service.start(user_id, body.duration_minutes)
    except StudyBotError as exc:
        raise _http_error(exc)
    return await _load_user(user_id, service)


@router.delete("/users/{user_id}/session", response_model=UserOutSchema)
async def cancel_session(
    user_id: str,
    service: Annotated[SessionService, Depends(get_sessions)],
):
    """Cancel the running session; no reward is settled."""
    try:
        await service.cancel(user_id)
    except StudyBotError as exc:
        raise _http_error(exc)
    return await _load_user(user_id, service)


@router.post("/users/{user_id}/session/reset")
async def reset_session(
    user_id: str,
    service: Annotated[SessionService, Depends(get_sessions)],
):
    """Clear a running or stuck session."""
    reset = await service.reset(user_id)
    return {"reset": reset}
