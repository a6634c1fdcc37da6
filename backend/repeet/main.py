from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .adapter import StorageAdapter
from .auth import AuthenticatedUser, get_optional_current_user, login_with_email_password, sign_out
from .clock import Clock, format_relative_date
from .config import get_settings
from .database import close_db_pool
from .errors import (
    NotFoundError,
    StorageUnavailableError,
    UnauthenticatedError,
    ValidationError,
)
from .importer import available_lists, parse_problem_lines
from .logging_config import LoggingMiddleware, get_logger, setup_logging
from .remote_storage import RemoteProblemStore
from .schemas import Problem, ProblemRecord
from .storage import LocalProblemStore
from .version import APP_VERSION

# Initialize logging before creating the app
setup_logging(APP_VERSION)

logger = get_logger("repeet.main")

settings = get_settings()

app = FastAPI(title="Repeet API", version=APP_VERSION)

# Add logging middleware first
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create API router with /api prefix
api_router = APIRouter(prefix="/api")

_logout_bearer = HTTPBearer()


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


class ProblemCreateRequest(BaseModel):
    # field rules live in ProblemInput; the store turns violations into a 400
    problem_name: str = ""
    difficulty: Optional[str] = None
    problem_link: Optional[str] = None
    source: Optional[str] = None
    topic: Optional[str] = None


class BulkCreateRequest(BaseModel):
    problems: List[ProblemCreateRequest] = []
    text: Optional[str] = None
    source: Optional[str] = None


class RateRequest(BaseModel):
    rating: int
    notes: Optional[str] = None
    time_spent_minutes: Optional[int] = None


class ProblemView(ProblemRecord):
    next_review_label: Optional[str] = None


@lru_cache(maxsize=1)
def get_local_store() -> LocalProblemStore:
    current = get_settings()
    logger.info("Local problem store configured", path=str(current.local_store_path))
    return LocalProblemStore(current.local_store_path, clock=current.clock())


def get_clock() -> Clock:
    return get_settings().clock()


def get_storage(
    user: Optional[AuthenticatedUser] = Depends(get_optional_current_user),
    local_store: LocalProblemStore = Depends(get_local_store),
    clock: Clock = Depends(get_clock),
) -> StorageAdapter:
    """The request's bearer token decides the backend; no token means the local store."""
    return StorageAdapter(
        session_provider=lambda: user,
        local_store=local_store,
        remote_factory=lambda user_id: RemoteProblemStore(user_id, clock=clock),
        clock=clock,
        audit_probability=get_settings().audit_probability,
    )


def to_view(problem: Problem, today: date) -> Dict[str, Any]:
    view = ProblemView(**problem.to_record().model_dump())
    if problem.next_review_date is not None:
        view.next_review_label = format_relative_date(problem.next_review_date, today)
    return view.model_dump(mode="json")


def to_views(problems: List[Problem], today: date) -> List[Dict[str, Any]]:
    return [to_view(problem, today) for problem in problems]


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info("Rejected invalid input", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    logger.info("Resource not found", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(UnauthenticatedError)
async def unauthenticated_handler(request: Request, exc: UnauthenticatedError):
    logger.warning("Unauthenticated storage access", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_401_UNAUTHORIZED, exc)


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
    logger.error("Storage unavailable", path=request.url.path, error=str(exc))
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@api_router.get("/")
async def api_root():
    """API root endpoint"""
    logger.info("API root endpoint accessed")
    return {"message": "Welcome to Repeet API"}


@api_router.post("/auth/login", response_model=LoginResponse)
async def auth_login(payload: LoginRequest):
    """Authenticate a user with Supabase using email and password credentials."""
    return await login_with_email_password(payload.email, payload.password)


@api_router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def auth_logout(credentials: HTTPAuthorizationCredentials = Depends(_logout_bearer)):
    await sign_out(credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.get("/problems")
async def list_problems(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    """Every problem regardless of status, oldest first"""
    problems = await storage.list_all()
    return {"problems": to_views(problems, clock.today())}


@api_router.get("/problems/queue")
async def list_queue(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    problems = await storage.list_queued()
    return {"problems": to_views(problems, clock.today())}


@api_router.get("/problems/review")
async def list_review(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    """Active problems, oldest last attempt first"""
    problems = await storage.list_active()
    return {"problems": to_views(problems, clock.today())}


@api_router.get("/problems/mastered")
async def list_mastered(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    problems = await storage.list_mastered()
    return {"problems": to_views(problems, clock.today())}


@api_router.post("/problems", status_code=status.HTTP_201_CREATED)
async def create_problem(
    payload: ProblemCreateRequest,
    storage: StorageAdapter = Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    problem = await storage.create(payload.model_dump())
    return to_view(problem, clock.today())


@api_router.post("/problems/bulk", status_code=status.HTTP_201_CREATED)
async def create_problems_bulk(
    payload: BulkCreateRequest,
    storage: StorageAdapter = Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    """Add several problems at once, either as objects or as pasted ``name,difficulty,topic,url`` lines"""
    items: List[Dict[str, Any]] = [item.model_dump() for item in payload.problems]
    if payload.text:
        items.extend(parse_problem_lines(payload.text, source=payload.source))

    created = await storage.create_bulk(items)
    return {"count": len(created), "problems": to_views(created, clock.today())}


@api_router.post("/problems/import/{list_name}", status_code=status.HTTP_201_CREATED)
async def import_curated_list(
    list_name: str,
    storage: StorageAdapter = Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    created = await storage.import_curated(list_name)
    return {"list_name": list_name, "count": len(created), "problems": to_views(created, clock.today())}


@api_router.get("/problems/{problem_id}")
async def get_problem(
    problem_id: str,
    storage: StorageAdapter = Depends(get_storage),
    clock: Clock = Depends(get_clock),
):
    problem = await storage.get(problem_id)
    return to_view(problem, clock.today())


@api_router.post("/problems/{problem_id}/rate", status_code=status.HTTP_204_NO_CONTENT)
async def rate_problem(
    problem_id: str,
    payload: RateRequest,
    storage: StorageAdapter = Depends(get_storage),
):
    await storage.rate(
        problem_id,
        payload.rating,
        notes=payload.notes,
        time_spent_minutes=payload.time_spent_minutes,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.delete("/problems/{problem_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_problem(problem_id: str, storage: StorageAdapter = Depends(get_storage)):
    await storage.delete(problem_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.get("/stats")
async def get_stats(storage: StorageAdapter = Depends(get_storage)):
    stats = await storage.get_stats()
    return stats.model_dump(by_alias=True)


@api_router.get("/audit")
async def get_daily_audit(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    """Today's mastery audit problem, if one was drawn"""
    audit = await storage.check_daily_audit()
    return {"audit": to_view(audit, clock.today()) if audit else None}


@api_router.get("/dashboard")
async def get_dashboard(storage: StorageAdapter = Depends(get_storage), clock: Clock = Depends(get_clock)):
    dashboard = await storage.load_dashboard()
    today = clock.today()
    return {
        "queue": to_views(dashboard.queue, today),
        "review": to_views(dashboard.review, today),
        "mastered": to_views(dashboard.mastered, today),
        "stats": dashboard.stats.model_dump(by_alias=True),
        "audit": to_view(dashboard.audit, today) if dashboard.audit else None,
    }


@api_router.get("/import-lists")
async def list_import_lists():
    return {"lists": available_lists()}


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    logger.debug("Health check requested")
    return {"status": "healthy"}


@api_router.get("/version")
async def get_version():
    """Get API version and system information"""
    logger.debug("Version endpoint requested")
    return {
        "api_version": APP_VERSION,
        "service_name": "Repeet API",
        "status": "running",
    }


app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info(
        "Application startup completed",
        remote_store_configured=bool(settings.database_url),
        timezone=settings.timezone,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Application shutdown initiated")
    await close_db_pool()
