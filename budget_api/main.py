import time
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import auth, crud, models, schemas
from .config import validate_settings
from .database import dispose_engine, get_db, get_engine
from .errors import AuthError, BudgetAPIError, ConfigurationError, ConflictError, NotFoundError
from .log import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = validate_settings()
    configure_logging(settings.app.log_level, settings.app.json_logs)
    models.Base.metadata.create_all(bind=get_engine())
    logger.info("database_migration_completed")
    yield
    logger.info("shutting_down")
    dispose_engine()


router = APIRouter(prefix="/api/v1")


def _issue_token(user_id: int, email: str, name: str) -> str:
    try:
        return auth.create_access_token(user_id, email, name)
    except ConfigurationError as exc:
        logger.error("token_generation_failed", user_id=user_id, exc_info=exc)
        raise BudgetAPIError(
            "Failed to generate authentication token", error="Token generation failed"
        ) from exc


def _current_period(month: Optional[int], year: Optional[int]):
    today = date.today()
    return month or today.month, year or today.year


# Authentication
@router.post("/auth/register", status_code=status.HTTP_201_CREATED, response_model=schemas.AuthResponse)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    if crud.get_user_by_email(db, user.email) is not None:
        raise ConflictError(
            "An account with this email already exists", error="Email already registered"
        )
    # fail before the account is committed if tokens cannot be signed
    auth.signing_settings()
    hashed_password = auth.get_password_hash(user.password)
    db_user = crud.create_user(db, user, hashed_password)
    logger.info("user_registered", user_id=db_user.id)
    token = _issue_token(db_user.id, db_user.email, db_user.name)
    return {"message": "Registration successful", "user": db_user, "token": token}


@router.post("/auth/login", response_model=schemas.AuthResponse)
def login(credentials: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, credentials.email)
    if not user or not auth.verify_password(credentials.password, user.hashed_password):
        logger.info("login_failed")
        raise AuthError(
            "Invalid email or password", error="Authentication failed", reason="credentials"
        )
    token = _issue_token(user.id, user.email, user.name)
    return {"message": "Login successful", "user": user, "token": token}


@router.post("/auth/refresh", response_model=schemas.TokenResponse)
def refresh_token(current_user: schemas.TokenData = Depends(auth.get_current_user)):
    token = _issue_token(current_user.user_id, current_user.email, current_user.name)
    return {"message": "Token refreshed successfully", "token": token}


# Users
@router.get("/profile", response_model=schemas.ProfileResponse)
def read_profile(
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    user = crud.get_user(db, current_user.user_id)
    if user is None:
        raise NotFoundError("User account no longer exists", error="User not found")
    return {"message": "Profile fetched successfully", "user": user}


# Categories
@router.get("/category", response_model=schemas.CategoryListResponse)
def read_categories(
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    categories = crud.get_categories(db, current_user.user_id)
    return {"message": "Data loaded!", "data": categories}


@router.post("/category/create", status_code=status.HTTP_201_CREATED, response_model=schemas.CategoryFetchResponse)
def create_category(
    request: schemas.CategoryRequest,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    category, budget = crud.set_budget(db, current_user.user_id, request)
    return {
        "message": "Category & Budget creation successful",
        "data_category": category,
        "data_budget": budget,
    }


@router.get("/category/delete/{category_id}", response_model=schemas.Envelope)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    crud.delete_category(db, category_id, current_user.user_id)
    return {"message": "Category deletion successful"}


@router.post("/category/update/{category_id}", response_model=schemas.CategoryFetchResponse)
def update_category(
    category_id: int,
    request: schemas.CategoryRequest,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    category, budget = crud.update_category(db, current_user.user_id, category_id, request)
    return {
        "message": "Category & Budget successfully updated",
        "data_category": category,
        "data_budget": budget,
    }


@router.get("/category/{category_id}", response_model=schemas.CategoryFetchResponse)
def read_category(
    category_id: int,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1, le=9999),
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    month, year = _current_period(month, year)
    category, budget = crud.get_category_with_budget(
        db, current_user.user_id, category_id, month, year
    )
    return {"message": "Data loaded!", "data_category": category, "data_budget": budget}


# Transactions
@router.get("/transaction", response_model=schemas.TransactionListResponse)
def read_transactions(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1, le=9999),
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    month, year = _current_period(month, year)
    rows = crud.get_transactions_for_month(db, current_user.user_id, month, year)
    data = [
        schemas.TransactionListItem(
            **schemas.Transaction.model_validate(transaction).model_dump(),
            category_name=category_name,
            transaction_date_label=transaction.transaction_date.strftime("%A, %d %B %Y %H:%M"),
        )
        for transaction, category_name in rows
    ]
    return {"message": "Data loaded!", "data": data}


@router.post("/transaction/create", status_code=status.HTTP_201_CREATED, response_model=schemas.TransactionFetchResponse)
def create_transaction(
    transaction: schemas.TransactionCreate,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    db_transaction = crud.create_transaction(db, transaction, current_user.user_id)
    return {"message": "Transaction creation successful", "data": db_transaction}


@router.get("/transaction/delete/{transaction_id}", response_model=schemas.Envelope)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    crud.delete_transaction(db, transaction_id, current_user.user_id)
    return {"message": "Transaction deletion successful"}


@router.post("/transaction/update/{transaction_id}", response_model=schemas.TransactionFetchResponse)
def update_transaction(
    transaction_id: int,
    patch: schemas.TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    db_transaction = crud.update_transaction(db, transaction_id, patch, current_user.user_id)
    return {"message": "Transaction successfully updated", "data": db_transaction}


@router.get("/transaction/{transaction_id}", response_model=schemas.TransactionFetchResponse)
def read_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: schemas.TokenData = Depends(auth.get_current_user),
):
    db_transaction = crud.get_transaction(db, transaction_id, current_user.user_id)
    return {"message": "Data loaded!", "data": db_transaction}


# Error rendering
async def handle_api_error(request: Request, exc: BudgetAPIError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_configuration_error(request: Request, exc: ConfigurationError):
    logger.error("configuration_error", reason=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Server misconfigured", "message": str(exc)},
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "message": details},
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        content = {"error": "Not Found", "message": "The requested endpoint does not exist"}
    else:
        content = {"error": str(exc.detail), "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Moniplan Budget API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS", "GET", "PUT", "DELETE"],
        allow_headers=[
            "Content-Type", "Content-Length", "Accept-Encoding", "X-CSRF-Token",
            "Authorization", "Accept", "Origin", "Cache-Control", "X-Requested-With",
        ],
    )
    app.middleware("http")(log_requests)

    app.add_exception_handler(BudgetAPIError, handle_api_error)
    app.add_exception_handler(ConfigurationError, handle_configuration_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)

    @app.get("/health", response_model=schemas.HealthResponse)
    def health_check():
        return {"status": "healthy", "message": "API is running"}

    app.include_router(router)
    return app


app = create_app()


def run():
    try:
        settings = validate_settings()
    except ConfigurationError as exc:
        configure_logging()
        logger.critical("startup_failed", reason=str(exc))
        raise SystemExit(1)

    configure_logging(settings.app.log_level, settings.app.json_logs)
    logger.info("server_starting", port=settings.app.port, environment=settings.app.environment)
    uvicorn.run(
        "budget_api.main:app",
        host="0.0.0.0",
        port=settings.app.port,
        timeout_keep_alive=settings.app.keep_alive_timeout,
        timeout_graceful_shutdown=settings.app.shutdown_grace_period,
        log_config=None,
    )


if __name__ == "__main__":
    run()
