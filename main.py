import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import authenticate
from config import get_settings
from credentials import PasswordHasher
from csv_utils import export_expenses
from database import Base, SessionLocal, engine
from errors import AppError, AuthError, StorageError
from filters import MAX_SQL_INTEGER, QueryFilterSet
from schemas import AuthOut, ExpenseIn, ExpenseOut, UserCreate, UserLogin
from services import AuthService, ExpenseQueryService, ExpenseService
from tokens import TokenService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker API")


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    logger.info("startup: tables verified")


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_token_service() -> TokenService:
    settings = get_settings()
    return TokenService(settings.token_secret, settings.token_lifetime_minutes * 60)


@lru_cache(maxsize=1)
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_settings().bcrypt_rounds)


def get_auth_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
) -> AuthService:
    return AuthService(db, hasher, tokens)


def current_user_id(
    authorization: Optional[str] = Header(default=None),
    tokens: TokenService = Depends(get_token_service),
    auth_service: AuthService = Depends(get_auth_service),
) -> int:
    user_id = authenticate(authorization, tokens)
    auth_service.resolve_user(user_id)
    return user_id


def filters_from_request(request: Request) -> QueryFilterSet:
    return QueryFilterSet.from_params(request.query_params)


def query_service(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
) -> ExpenseQueryService:
    return ExpenseQueryService(db, user_id, strict_sort=get_settings().strict_sort)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, AuthError) and exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(problems) or "Invalid request"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Route not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"storage_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=StorageError().to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"unhandled_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=StorageError().to_dict())


@app.get("/health")
def health_check():
    return {"status": "OK", "message": "Server is running"}


@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
def register(payload: UserCreate, auth_service: AuthService = Depends(get_auth_service)):
    token, user = auth_service.register(payload)
    return AuthOut(message="User registered successfully", token=token, user=user)


@app.post("/api/auth/login", response_model=AuthOut)
def login(payload: UserLogin, auth_service: AuthService = Depends(get_auth_service)):
    token, user = auth_service.login(payload)
    return AuthOut(message="Login successful", token=token, user=user)


@app.delete("/api/auth/profile")
def delete_profile(
    user_id: int = Depends(current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.delete_account(user_id)
    return {"message": "User account deleted successfully"}


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user_id).create(payload)


@app.get("/api/expenses", response_model=list[ExpenseOut])
def list_expenses(request: Request, service: ExpenseQueryService = Depends(query_service)):
    return service.list_expenses(filters_from_request(request))


@app.get("/api/expenses/export/csv")
def export_expenses_endpoint(
    request: Request, service: ExpenseQueryService = Depends(query_service)
):
    rows = service.export_rows(filters_from_request(request))
    csv_text = export_expenses(rows)
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="expenses.csv"'},
    )


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    payload: ExpenseIn,
    expense_id: int = Path(..., ge=1, le=MAX_SQL_INTEGER),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, user_id).update(expense_id, payload)


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int = Path(..., ge=1, le=MAX_SQL_INTEGER),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user_id).delete(expense_id)
    return {"message": "Expense deleted successfully"}


@app.get("/api/reports/summary")
def report_summary(request: Request, service: ExpenseQueryService = Depends(query_service)):
    return service.summary(filters_from_request(request))


@app.get("/api/reports/monthly")
def report_monthly(
    year: Optional[str] = Query(default=None),
    year_month: Optional[str] = Query(default=None, alias="year-month"),
    service: ExpenseQueryService = Depends(query_service),
):
    return service.monthly(year, year_month)


@app.get("/api/reports/top")
def report_top(request: Request, service: ExpenseQueryService = Depends(query_service)):
    return service.top_categories(filters_from_request(request))
