from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from services.routine_engine import RoutineEngine


router = APIRouter(prefix="/users/{user_id}", tags=["routine"])


def get_engine(request: Request) -> RoutineEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Routine engine is not ready")
    return engine


class SessionCompleteRequest(BaseModel):
    step_ids: list[str] = Field(default_factory=list)
    day: Optional[date] = None


class SessionStartRequest(BaseModel):
    started_at: Optional[datetime] = None
    day: Optional[date] = None


class StepSkipRequest(BaseModel):
    step_id: str
    day: Optional[date] = None


class TimerSkipRequest(BaseModel):
    step_id: str
    timer_duration: int = 0  # seconds
    day: Optional[date] = None


class ExerciseEarlyEndRequest(BaseModel):
    exercise_id: str
    day: Optional[date] = None


class OutcomeRatingRequest(BaseModel):
    week_number: int
    rating: str  # worse | same | better
    photo_date: Optional[date] = None


def _range_or_400(start: date, end: date) -> None:
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")


@router.get("/scores/{day}")
async def get_scores(user_id: str, day: date, engine: RoutineEngine = Depends(get_engine)):
    snapshot = await engine.score(user_id, day)
    return snapshot.as_dict()


@router.get("/scores")
async def get_score_range(
    user_id: str,
    start: date = Query(...),
    end: date = Query(...),
    engine: RoutineEngine = Depends(get_engine),
):
    _range_or_400(start, end)
    if (end - start).days > engine.cfg.STREAK_MAX_LOOKBACK_DAYS:
        raise HTTPException(status_code=400, detail="Date range too large")
    rows = await engine.score_range(user_id, start, end)
    return {"scores": [row.as_dict() for row in rows]}


@router.get("/streak")
async def get_streak(user_id: str, today: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    state = await engine.streak(user_id, today)
    return state.as_dict()


@router.get("/weekly-summary")
async def get_weekly_summary(user_id: str, today: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    return await engine.weekly_summary(user_id, today)


@router.get("/monthly-insights")
async def get_monthly_insights(user_id: str, today: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    return await engine.monthly_insights(user_id, today)


@router.get("/skip-analytics")
async def get_skip_analytics(
    user_id: str,
    start: date = Query(...),
    end: date = Query(...),
    engine: RoutineEngine = Depends(get_engine),
):
    _range_or_400(start, end)
    analytics = await engine.skip_analytics(user_id, start, end)
    return analytics.as_dict()


@router.get("/effectiveness")
async def get_effectiveness(
    user_id: str,
    start: date = Query(...),
    end: date = Query(...),
    engine: RoutineEngine = Depends(get_engine),
):
    _range_or_400(start, end)
    return await engine.time_vs_effectiveness(user_id, start, end)


@router.get("/hardest-day-reminder")
async def get_hardest_day_reminder(user_id: str, today: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    return {"reminder": await engine.hardest_day_reminder(user_id, today)}


@router.post("/steps/{step_id}/complete")
async def complete_step(user_id: str, step_id: str, day: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    result = await engine.complete_step(user_id, step_id, day)
    return result.as_dict()


@router.delete("/steps/{step_id}/complete")
async def uncomplete_step(user_id: str, step_id: str, day: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    result = await engine.uncomplete_step(user_id, step_id, day)
    return result.as_dict()


@router.post("/exercises/{exercise_id}/complete")
async def complete_exercise(
    user_id: str, exercise_id: str, day: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)
):
    result = await engine.complete_exercise(user_id, exercise_id, day)
    return result.as_dict()


@router.post("/sessions/{session}/complete")
async def complete_session(
    user_id: str,
    session: str,
    payload: SessionCompleteRequest,
    engine: RoutineEngine = Depends(get_engine),
):
    try:
        result = await engine.complete_session(user_id, session, payload.step_ids, payload.day)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return result.as_dict()


@router.post("/sessions/{session}/start")
async def start_session(
    user_id: str,
    session: str,
    payload: SessionStartRequest,
    engine: RoutineEngine = Depends(get_engine),
):
    try:
        recorded = await engine.start_session(user_id, session, payload.started_at, payload.day)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"recorded": recorded}


@router.post("/skips/step")
async def skip_step(user_id: str, payload: StepSkipRequest, engine: RoutineEngine = Depends(get_engine)):
    return {"recorded": await engine.skip_step(user_id, payload.step_id, payload.day)}


@router.post("/skips/timer")
async def skip_timer(user_id: str, payload: TimerSkipRequest, engine: RoutineEngine = Depends(get_engine)):
    recorded = await engine.skip_timer(user_id, payload.step_id, payload.timer_duration, payload.day)
    return {"recorded": recorded}


@router.post("/skips/exercise-early-end")
async def end_exercise_early(user_id: str, payload: ExerciseEarlyEndRequest, engine: RoutineEngine = Depends(get_engine)):
    return {"recorded": await engine.end_exercise_early(user_id, payload.exercise_id, payload.day)}


@router.post("/outcome-ratings")
async def rate_week(user_id: str, payload: OutcomeRatingRequest, engine: RoutineEngine = Depends(get_engine)):
    try:
        row = await engine.rate_week(user_id, payload.week_number, payload.rating, payload.photo_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return row


@router.post("/dev/reset-today")
async def reset_today(user_id: str, day: Optional[date] = None, engine: RoutineEngine = Depends(get_engine)):
    if engine.cfg.is_production_like:
        raise HTTPException(status_code=403, detail="Resets are disabled in this environment")
    await engine.reset_day(user_id, day)
    return {"status": "ok"}


@router.post("/dev/reset-skips")
async def reset_skips(user_id: str, engine: RoutineEngine = Depends(get_engine)):
    if engine.cfg.is_production_like:
        raise HTTPException(status_code=403, detail="Resets are disabled in this environment")
    await engine.reset_skip_analytics(user_id)
    return {"status": "ok"}
