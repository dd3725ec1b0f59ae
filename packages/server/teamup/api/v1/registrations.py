"""Gathering RSVP and contest sign-up endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from teamup.core.auth import get_current_user
from teamup.core.database import get_session
from teamup.models.user import User
from teamup.services.registrations import (
    get_contest_status,
    get_gathering_attendance,
    set_gathering_attendance,
    sign_up_for_contest,
)
from teamup_shared.schemas.users import ContestResponse, GatheringRequest, GatheringResponse

router = APIRouter()


@router.get("/gathering", response_model=GatheringResponse)
async def gathering_status(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return GatheringResponse(attending=await get_gathering_attendance(session, user.id))


@router.post("/gathering", response_model=GatheringResponse)
async def answer_gathering(
    body: GatheringRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    attending = await set_gathering_attendance(session, user.id, body.attending)
    await session.commit()
    return GatheringResponse(attending=attending)


@router.get("/contest-signup", response_model=ContestResponse)
async def contest_status(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return ContestResponse(status=await get_contest_status(session, user.id))


@router.post("/contest-signup", response_model=ContestResponse)
async def contest_signup(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    status = await sign_up_for_contest(session, user.id)
    await session.commit()
    return ContestResponse(status=status)
