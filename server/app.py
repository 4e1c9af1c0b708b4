"""FastAPI server for the dushi progress engine."""

import datetime as dt
import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, FastAPI, Path, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.clock import SystemClock
from core.config import (
    DEFAULT_MAX_HEARTS, DEFAULT_HEART_REGEN_MINUTES, DEFAULT_DAILY_GOAL_XP,
    DEFAULT_DECAY_RATE_PER_DAY, DEFAULT_PRACTICE_INTERVAL_HOURS
)
from core.errors import EngineError, InsufficientResource, StoreUnavailable
from core.hearts import HeartsEngine
from core.interfaces import Clock, RowStore
from core.mastery import MasteryEngine
from core.models import (
    DailyGoalState, GoalProgress, PracticeResult, ResourceState, RewardOutcome,
    SkillMasteryState, StreakState
)
from core.streaks import StreakEngine, next_milestone, streak_multiplier

from server.file_storage import FileStorage
from server.postgres_storage import PostgresStorage

logger = logging.getLogger(__name__)


# Pydantic models for API
class ResourceResponse(BaseModel):
    resource_key: str
    current: int
    max: int
    last_update: datetime
    regen_period_seconds: int
    next_unit_at: Optional[datetime]
    full_at: Optional[datetime]


class CapacityRequest(BaseModel):
    amount: int = Field(gt=0)
    fill: bool = True


class RegenRateRequest(BaseModel):
    delta_seconds: int  # Negative shortens the period


class SkillResponse(BaseModel):
    skill_id: str
    strength: int
    last_practiced_at: datetime
    next_due_at: datetime
    decay_rate_per_day: int
    practice_interval_seconds: int


class PracticeRequest(BaseModel):
    score: int = Field(ge=0, le=100)
    time_spent_seconds: float = Field(ge=0)
    mistakes: int = Field(ge=0)
    session_id: Optional[str] = Field(default=None, pattern=r'^[A-Za-z0-9_-]{1,64}$')  # Resend to retry safely


class PracticeResponse(BaseModel):
    session_id: str
    skill_id: str
    score: int
    time_spent_seconds: float
    mistakes: int
    strength_before: int
    strength: int
    increase: int
    completed_at: datetime


class SkillSummaryResponse(BaseModel):
    total_skills: int
    average_strength: float
    needing_practice: int
    perfect: int


class RewardResponse(BaseModel):
    xp_delta: int
    currency_delta: int
    unlocked_reward_ids: list[str]


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date]
    freezes_available: int
    claimed_milestones: list[int]
    daily_target_xp: int
    multiplier: float
    next_milestone: Optional[int]


class GoalStateResponse(BaseModel):
    date: dt.date
    target_xp: int
    current_xp: int
    completed: bool
    reward_granted: bool
    status: str


class DailyGoalResponse(BaseModel):
    goal: GoalStateResponse
    percent: float
    remaining_xp: int
    multiplier: float
    next_reward: RewardResponse


class EarnRequest(BaseModel):
    amount: int = Field(ge=0)


class EarnResponse(BaseModel):
    goal: GoalStateResponse
    reward: Optional[RewardResponse]


class AdjustGoalRequest(BaseModel):
    target_xp: int = Field(gt=0)


class FreezeRequest(BaseModel):
    count: int = Field(default=1, gt=0)


class MultiplierResponse(BaseModel):
    streak: int
    multiplier: float
    next_milestone: Optional[int]


def resource_response(state: ResourceState) -> ResourceResponse:
    return ResourceResponse(
        resource_key=state.resource_key,
        current=state.current,
        max=state.max,
        last_update=state.last_update,
        regen_period_seconds=int(state.regen_period.total_seconds()),
        next_unit_at=state.next_unit_at,
        full_at=state.full_at,
    )


def skill_response(state: SkillMasteryState) -> SkillResponse:
    return SkillResponse(
        skill_id=state.skill_id,
        strength=state.strength,
        last_practiced_at=state.last_practiced_at,
        next_due_at=state.next_due_at,
        decay_rate_per_day=state.decay_rate_per_day,
        practice_interval_seconds=int(state.practice_interval.total_seconds()),
    )


def practice_response(result: PracticeResult) -> PracticeResponse:
    return PracticeResponse(increase=result.increase, **result.to_dict())


def reward_response(reward: RewardOutcome) -> RewardResponse:
    return RewardResponse(**reward.to_dict())


def streak_response(streak: StreakState) -> StreakResponse:
    return StreakResponse(
        multiplier=float(streak_multiplier(streak.current_streak)),
        next_milestone=next_milestone(streak.current_streak),
        **streak.to_dict(),
    )


def goal_state_response(goal: DailyGoalState) -> GoalStateResponse:
    return GoalStateResponse(status=goal.status, **goal.to_dict())


def daily_goal_response(progress: GoalProgress) -> DailyGoalResponse:
    return DailyGoalResponse(
        goal=goal_state_response(progress.goal),
        percent=progress.percent,
        remaining_xp=progress.remaining_xp,
        multiplier=float(progress.multiplier),
        next_reward=reward_response(progress.next_reward),
    )


def build_storage() -> RowStore:
    """Pick the storage backend from the environment."""
    # Use PostgreSQL by default, set DUSHI_STORAGE=file to use file storage
    storage_type = os.environ.get('DUSHI_STORAGE', 'postgres')
    if storage_type == 'file':
        logger.info("Using file storage")
        return FileStorage()
    logger.info("Using PostgreSQL storage")
    return PostgresStorage()


def wire_engines(app: FastAPI, store: RowStore, clock: Clock) -> None:
    """Build the engines from the store's config overrides and attach them to the app."""
    config = store.load_config()
    tz = ZoneInfo(config['timezone']) if config.get('timezone') else timezone.utc
    app.state.store = store
    app.state.hearts = HeartsEngine(
        store, clock,
        max_units=config.get('max_hearts', DEFAULT_MAX_HEARTS),
        regen_period=timedelta(minutes=config.get('heart_regen_minutes', DEFAULT_HEART_REGEN_MINUTES)),
    )
    app.state.mastery = MasteryEngine(
        store, clock,
        decay_rate_per_day=config.get('decay_rate_per_day', DEFAULT_DECAY_RATE_PER_DAY),
        practice_interval=timedelta(hours=config.get('practice_interval_hours',
                                                     DEFAULT_PRACTICE_INTERVAL_HOURS)),
    )
    app.state.streaks = StreakEngine(
        store, clock, tz=tz,
        default_target_xp=config.get('daily_goal_xp', DEFAULT_DAILY_GOAL_XP),
    )


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Map engine failures to stable error codes."""
    content = {'error_code': exc.code, 'message': str(exc), 'retryable': exc.retryable}
    headers = None
    if isinstance(exc, InsufficientResource):
        status_code = 409
        next_at = exc.next_available_at
        content['details'] = {
            'resource': exc.resource_key,
            'next_available_at': next_at.isoformat() if next_at else None,
        }
    elif isinstance(exc, StoreUnavailable):
        status_code = 503
        headers = {'Retry-After': '1'}
        content['message'] = "Progress is temporarily unavailable, please try again"
        logger.error(f"Store unavailable on {request.url.path}: {exc}")
    else:
        status_code = 409 if exc.retryable else 500
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={'error_code': 'invalid_request', 'message': str(exc), 'retryable': False},
    )


router = APIRouter(prefix="/api")


# User listing
@router.get("/users")
def list_users(request: Request):
    """List all users with stored progress."""
    return {"users": request.app.state.store.list_users()}


# Regenerating resources
@router.get("/users/{user_id}/resources/{resource_key}", response_model=ResourceResponse)
def get_resource(user_id: str, resource_key: str, request: Request):
    return resource_response(request.app.state.hearts.get_state(user_id, resource_key))


@router.post("/users/{user_id}/resources/{resource_key}/consume", response_model=ResourceResponse)
def consume_resource(user_id: str, resource_key: str, request: Request):
    return resource_response(request.app.state.hearts.consume(user_id, resource_key))


@router.post("/users/{user_id}/resources/{resource_key}/refill", response_model=ResourceResponse)
def refill_resource(user_id: str, resource_key: str, request: Request):
    return resource_response(request.app.state.hearts.refill_full(user_id, resource_key))


@router.post("/users/{user_id}/resources/{resource_key}/capacity", response_model=ResourceResponse)
def increase_capacity(user_id: str, resource_key: str, body: CapacityRequest, request: Request):
    state = request.app.state.hearts.increase_capacity(user_id, resource_key, body.amount, fill=body.fill)
    return resource_response(state)


@router.post("/users/{user_id}/resources/{resource_key}/regen-rate", response_model=ResourceResponse)
def adjust_regen_rate(user_id: str, resource_key: str, body: RegenRateRequest, request: Request):
    state = request.app.state.hearts.adjust_regen_rate(
        user_id, resource_key, timedelta(seconds=body.delta_seconds)
    )
    return resource_response(state)


# Skill mastery (fixed paths before /skills/{skill_id})
@router.get("/users/{user_id}/skills/due", response_model=list[SkillResponse])
def list_due_skills(user_id: str, request: Request):
    return [skill_response(s) for s in request.app.state.mastery.list_due(user_id)]


@router.get("/users/{user_id}/skills/summary", response_model=SkillSummaryResponse)
def skill_summary(user_id: str, request: Request):
    return SkillSummaryResponse(**request.app.state.mastery.skill_summary(user_id).to_dict())


@router.get("/users/{user_id}/skills/{skill_id}", response_model=SkillResponse)
def get_skill(user_id: str, skill_id: str, request: Request):
    return skill_response(request.app.state.mastery.get_strength(user_id, skill_id))


@router.post("/users/{user_id}/skills/{skill_id}/practice", response_model=PracticeResponse)
def record_practice(user_id: str, skill_id: str, body: PracticeRequest, request: Request):
    result = request.app.state.mastery.record_practice(
        user_id, skill_id, body.score, body.time_spent_seconds, body.mistakes,
        session_id=body.session_id
    )
    return practice_response(result)


@router.get("/users/{user_id}/skills/{skill_id}/history", response_model=list[PracticeResponse])
def practice_history(user_id: str, skill_id: str, request: Request):
    return [practice_response(r) for r in request.app.state.mastery.practice_history(user_id, skill_id)]


# Streaks and daily goals
@router.get("/users/{user_id}/streak", response_model=StreakResponse)
def get_streak(user_id: str, request: Request):
    return streak_response(request.app.state.streaks.get_streak(user_id))


@router.post("/users/{user_id}/streak/freezes", response_model=StreakResponse)
def grant_streak_freeze(user_id: str, body: FreezeRequest, request: Request):
    return streak_response(request.app.state.streaks.grant_streak_freeze(user_id, body.count))


@router.post("/users/{user_id}/streak/milestones/claim", response_model=RewardResponse)
def claim_milestones(user_id: str, request: Request):
    return reward_response(request.app.state.streaks.claim_streak_milestones(user_id))


@router.post("/users/{user_id}/xp", response_model=EarnResponse)
def earn_xp(user_id: str, body: EarnRequest, request: Request):
    result = request.app.state.streaks.earn_xp(user_id, body.amount)
    return EarnResponse(
        goal=goal_state_response(result.goal),
        reward=reward_response(result.reward) if result.reward else None,
    )


@router.get("/users/{user_id}/daily-goal", response_model=DailyGoalResponse)
def get_daily_goal(user_id: str, request: Request):
    return daily_goal_response(request.app.state.streaks.goal_progress(user_id))


@router.put("/users/{user_id}/daily-goal", response_model=GoalStateResponse)
def adjust_daily_goal(user_id: str, body: AdjustGoalRequest, request: Request):
    return goal_state_response(request.app.state.streaks.adjust_daily_goal(user_id, body.target_xp))


@router.get("/streak-multiplier/{streak}", response_model=MultiplierResponse)
def get_streak_multiplier(streak: int = Path(ge=0)):
    return MultiplierResponse(
        streak=streak,
        multiplier=float(streak_multiplier(streak)),
        next_milestone=next_milestone(streak),
    )


def create_app(store: RowStore = None, clock: Clock = None) -> FastAPI:
    """Build the API. Without a store, one is chosen from the environment at startup."""
    app = FastAPI(title="Dushi Progress API",
                  description="Hearts, skill mastery, streaks and daily goals")
    app.state.store = None
    if store is not None:
        wire_engines(app, store, clock or SystemClock())

    @app.on_event("startup")
    async def startup():
        """Initialize storage and engines on startup."""
        if app.state.store is None:
            logging.basicConfig(level=os.environ.get('DUSHI_LOG_LEVEL', 'INFO'))
            wire_engines(app, build_storage(), clock or SystemClock())

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.include_router(router)
    return app


app = create_app()
