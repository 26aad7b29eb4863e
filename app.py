# app.py - ProfAI resilient API
# - Every store access is health-gated, retried with backoff and time-boxed
# - Degraded responses carry `degraded` + `warning`; temporary users carry `is_temporary`

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request

import mock_data
import tutor
from db import SQLiteStore, ensure_seed_courses
from engines.accounts import AccountNotFoundError, AccountService, DuplicateAccountError
from engines.backoff import BackoffPolicy
from engines.caching import FallbackCache
from engines.errors import ConstraintViolation, NotFound, StoreError
from engines.gateway import GuardedStore, store_operation
from engines.health import HealthGate
from engines.provisioning import is_temporary_id
from engines.recommendation import ContentCatalog, MatchQuery, best_match, best_scored, random_beginner_item
from engines.resilience import ResilienceConfig, ResilientExecutor
from env_validation import Settings, validate_environment
from schemas import (
    CourseSummary,
    CoursesResponse,
    HealthStatus,
    PracticeFeedback,
    PracticeFeedbackBody,
    PracticeFeedbackResponse,
    ProfileResponse,
    ProfileUpdateBody,
    ProfileUpdateResponse,
    ProgressBody,
    ProgressEntry,
    ProgressResponse,
    RecommendationBody,
    RecommendationResponse,
    SignupBody,
    SignupResponse,
)

logger = logging.getLogger(__name__)

MOCK_COURSES_WARNING = "Using demonstration data - database unavailable"
CACHED_COURSES_WARNING = "Database unavailable - showing last known courses"
PROGRESS_UNAVAILABLE_WARNING = "Database unavailable - progress could not be loaded"
PROGRESS_NOT_SAVED_WARNING = "Database unavailable - progress was not saved, please retry later"
TEMPORARY_PROGRESS_WARNING = "Temporary account - progress is not saved"
TUTOR_UNAVAILABLE_WARNING = "Tutor unavailable - showing general guidance"

_COURSES_CACHE_KEY = "courses"


@dataclass
class Services:
    settings: Settings
    store: SQLiteStore
    catalog: ContentCatalog
    gate: HealthGate
    guarded: GuardedStore
    accounts: AccountService
    cache: FallbackCache


def build_services(
    settings: Settings,
    *,
    store: Optional[Any] = None,
    catalog: Optional[ContentCatalog] = None,
    sleep: Optional[Any] = None,
) -> Services:
    """Wire the store, resilience policies and content catalog for one process."""
    store = store or SQLiteStore(settings.db_path, max_connections=settings.db_max_connections)
    catalog = catalog or ContentCatalog(settings.content_corpus_path)
    executor = ResilientExecutor(BackoffPolicy(settings.backoff_base), sleep=sleep)
    gate = HealthGate(store_operation(store.ping), timeout=settings.health_timeout)
    guarded = GuardedStore(
        executor,
        gate,
        read_policy=ResilienceConfig(
            max_retries=settings.read_max_retries,
            per_attempt_timeout=settings.read_timeout,
        ),
        write_policy=ResilienceConfig(
            max_retries=settings.write_max_retries,
            per_attempt_timeout=settings.write_timeout,
        ),
    )
    cache = FallbackCache()
    accounts = AccountService(store, guarded, profile_cache=FallbackCache(max_size=1024))
    return Services(
        settings=settings,
        store=store,
        catalog=catalog,
        gate=gate,
        guarded=guarded,
        accounts=accounts,
        cache=cache,
    )


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    _configure_logging()
    validate_environment()
    settings = Settings.from_env()
    services = build_services(settings)
    try:
        await asyncio.to_thread(services.store.init)
        if settings.seed_demo_courses:
            await asyncio.to_thread(ensure_seed_courses, services.store, mock_data.courses())
    except StoreError as exc:
        # Requests will be served from fallbacks until the store recovers.
        logger.error("Store initialisation failed (%s): %s", exc.kind.value, exc)
    logger.info(
        "Store policies: reads %dx%.1fs, writes %dx%.1fs, backoff base %.2fs",
        settings.read_max_retries,
        settings.read_timeout,
        settings.write_max_retries,
        settings.write_timeout,
        settings.backoff_base,
    )
    app.state.services = services
    try:
        yield
    finally:
        services.store.close()


app = FastAPI(title="ProfAI", version="1.0.0", lifespan=_lifespan)


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


# ---------- Health ----------
@app.get("/health", response_model=HealthStatus)
async def health(request: Request):
    return await _services(request).gate.check()


# ---------- Accounts ----------
@app.post("/signup", response_model=SignupResponse)
async def signup(body: SignupBody, request: Request):
    email = body.email.strip()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise HTTPException(status_code=400, detail="A valid email is required")

    services = _services(request)
    try:
        outcome = await services.accounts.register(
            email,
            body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            learning_style=body.learning_style,
            skill_level=body.skill_level,
        )
    except DuplicateAccountError:
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    return SignupResponse(
        message=outcome.message,
        user=outcome.user,
        degraded=outcome.degraded,
        warning=outcome.warning,
    )


@app.get("/profile", response_model=ProfileResponse)
async def profile(user_id: str, request: Request):
    try:
        outcome = await _services(request).accounts.get_profile(user_id)
    except AccountNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return ProfileResponse(
        user=outcome.user,
        profile=outcome.profile,
        degraded=outcome.degraded,
        warning=outcome.warning,
    )


@app.put("/profile", response_model=ProfileUpdateResponse)
async def update_profile(body: ProfileUpdateBody, request: Request):
    first_name = body.first_name.strip()
    last_name = body.last_name.strip()
    if not first_name or not last_name:
        raise HTTPException(status_code=400, detail="First name and last name are required")
    try:
        outcome = await _services(request).accounts.update_profile(
            body.user_id,
            first_name=first_name,
            last_name=last_name,
            learning_style=body.learning_style,
            skill_level=body.skill_level,
            emotion_baseline=body.emotion_baseline,
            preferences=body.preferences,
        )
    except AccountNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return ProfileUpdateResponse(
        message="Profile updated successfully" if outcome.persisted else "Profile changes were not saved",
        user=outcome.user,
        profile=outcome.profile,
        persisted=outcome.persisted,
        degraded=outcome.degraded,
        warning=outcome.warning,
    )


# ---------- Courses & progress ----------
def _course_summary(row: Dict[str, Any], completed: int) -> CourseSummary:
    total = int(row.get("total_lessons") or 0)
    completed = max(0, min(int(completed), total))
    return CourseSummary(
        id=str(row["id"]),
        title=str(row["title"]),
        description=row.get("description"),
        category=row.get("category"),
        difficulty=row.get("difficulty"),
        total_lessons=total,
        completed_lessons=completed,
        progress=round(completed / total * 100) if total else 0,
    )


@app.get("/courses", response_model=CoursesResponse)
async def courses(request: Request, user_id: Optional[str] = None):
    services = _services(request)
    cached = services.cache.get(_COURSES_CACHE_KEY)
    fallback = cached if cached is not None else mock_data.courses()

    outcome = await services.guarded.read(services.store.list_courses, fallback=fallback, name="list_courses")
    rows: List[Dict[str, Any]] = outcome.value
    degraded = outcome.degraded
    warning = None
    if degraded:
        warning = CACHED_COURSES_WARNING if cached is not None else MOCK_COURSES_WARNING
    else:
        services.cache.add(_COURSES_CACHE_KEY, rows)

    completed: Dict[str, int] = {}
    if user_id and not degraded and not is_temporary_id(user_id):
        progress_outcome = await services.guarded.read(
            services.store.completed_lessons_by_course,
            user_id,
            fallback={},
            name="completed_lessons_by_course",
            check_health=False,
        )
        completed = progress_outcome.value
        if progress_outcome.degraded:
            degraded = True
            warning = PROGRESS_UNAVAILABLE_WARNING

    summaries = [_course_summary(row, completed.get(str(row["id"]), 0)) for row in rows]
    return CoursesResponse(courses=summaries, total=len(summaries), degraded=degraded, warning=warning)


@app.get("/progress", response_model=ProgressResponse)
async def get_progress(user_id: str, request: Request):
    if is_temporary_id(user_id):
        return ProgressResponse(
            user_id=user_id,
            entries=[],
            persisted=False,
            degraded=True,
            warning=TEMPORARY_PROGRESS_WARNING,
        )
    services = _services(request)
    outcome = await services.guarded.read(services.store.list_progress, user_id, fallback=[], name="list_progress")
    return ProgressResponse(
        user_id=user_id,
        entries=[ProgressEntry(**row) for row in outcome.value],
        persisted=not outcome.degraded,
        degraded=outcome.degraded,
        warning=PROGRESS_UNAVAILABLE_WARNING if outcome.degraded else None,
    )


@app.post("/progress", response_model=ProgressResponse)
async def record_progress(body: ProgressBody, request: Request):
    entry = ProgressEntry(course_id=body.course_id, lesson_id=body.lesson_id, status=body.status, score=body.score)
    if is_temporary_id(body.user_id):
        return ProgressResponse(
            user_id=body.user_id,
            entries=[entry],
            persisted=False,
            degraded=True,
            warning=TEMPORARY_PROGRESS_WARNING,
        )

    services = _services(request)
    try:
        outcome = await services.guarded.write(
            services.store.record_progress,
            body.user_id,
            body.course_id,
            body.lesson_id,
            body.status,
            body.score,
            fallback=None,
            name="record_progress",
        )
    except NotFound:
        raise HTTPException(status_code=404, detail="Lesson not found in course")
    except ConstraintViolation:
        raise HTTPException(status_code=400, detail="Unknown user")

    return ProgressResponse(
        user_id=body.user_id,
        entries=[entry],
        persisted=not outcome.degraded,
        degraded=outcome.degraded,
        warning=PROGRESS_NOT_SAVED_WARNING if outcome.degraded else None,
    )


# ---------- Content recommendations ----------
@app.post("/content/recommend", response_model=RecommendationResponse)
def recommend_content(body: RecommendationBody, request: Request):
    query = MatchQuery(
        text=body.text,
        current_topic=body.current_topic,
        affective_state=body.affective_state,
    )
    best = best_scored(query, _services(request).catalog.items)
    if best is None:
        return RecommendationResponse()
    return RecommendationResponse(item=best.item.to_dict(), score=best.score, reasons=list(best.reasons))


@app.get("/content")
def list_content(request: Request, topic: Optional[str] = None):
    catalog = _services(request).catalog
    items = catalog.by_topic(topic) if topic and topic.strip() else list(catalog.items)
    return {"topic": topic, "count": len(items), "items": [item.to_dict() for item in items]}


@app.get("/content/random")
def random_content(request: Request):
    item = random_beginner_item(_services(request).catalog.items)
    if item is None:
        raise HTTPException(status_code=404, detail="No beginner content available")
    return item.to_dict()


# ---------- Practice feedback ----------
@app.post("/practice-feedback", response_model=PracticeFeedbackResponse)
async def practice_feedback(body: PracticeFeedbackBody, request: Request):
    services = _services(request)
    settings = services.settings
    degraded = False
    warning = None
    try:
        feedback = await asyncio.to_thread(
            tutor.generate_practice_feedback,
            body.exercise,
            body.answer,
            affective_state=body.affective_state,
            url=settings.llm_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
        )
    except tutor.TutorServiceError as exc:
        logger.warning("Practice feedback degraded: %s", exc)
        feedback = PracticeFeedback(**mock_data.practice_feedback())
        degraded = True
        warning = TUTOR_UNAVAILABLE_WARNING

    recommendation = None
    if body.affective_state in ("confused", "frustrated"):
        item = best_match(
            MatchQuery(text=body.exercise, affective_state=body.affective_state),
            services.catalog.items,
        )
        recommendation = item.to_dict() if item else None

    return PracticeFeedbackResponse(
        feedback=feedback,
        recommendation=recommendation,
        degraded=degraded,
        warning=warning,
    )
