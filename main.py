import logging
import time
from datetime import date, datetime, timezone
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from auth import AuthService, profile_of
from config import get_settings
from database import SessionLocal
from errors import ErrorKind, ServiceError, Unavailable
from models import Category, Investment, Transaction, TransactionType, User
from schemas import (
    CategoryIn,
    CategoryUpdate,
    InvestmentIn,
    InvestmentUpdate,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdateIn,
    RefreshIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    CategoryService,
    InvestmentService,
    ReportService,
    TransactionFilters,
    TransactionService,
)
from tokens import TokenPair

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_BY_KIND = {
    ErrorKind.validation_failed: 400,
    ErrorKind.conflict: 409,
    ErrorKind.not_found: 404,
    ErrorKind.invalid_credentials: 401,
    ErrorKind.invalid_token: 401,
    ErrorKind.expired: 401,
    ErrorKind.unavailable: 503,
}


def error_response(kind: ErrorKind, message: str, details=None) -> JSONResponse:
    payload: dict[str, object] = {"code": kind.value, "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=STATUS_BY_KIND[kind], content={"error": payload})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return error_response(exc.kind, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append({"field": loc or "body", "message": err.get("msg", "invalid")})
    return error_response(
        ErrorKind.validation_failed, "Invalid request payload", details
    )


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"database_unavailable: path={request.url.path} error={exc!r}")
    unavailable = Unavailable("Database unavailable")
    return error_response(unavailable.kind, str(unavailable))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request: method={request.method} path={request.url.path} "
        f"status={response.status_code} duration_ms={elapsed_ms:.1f}"
    )
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    return AuthService(db)


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    parts = header.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def current_user(
    request: Request, auth: AuthService = Depends(get_auth_service)
) -> User:
    return auth.authenticate(bearer_token(request))


def _money(value) -> Optional[str]:
    return None if value is None else str(value)


def _tokens_out(pair: TokenPair) -> dict[str, str]:
    return {"access_token": pair.access_token, "refresh_token": pair.refresh_token}


def _category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "icon": category.icon,
        "is_default": category.is_default,
    }


def _transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "amount": _money(txn.amount),
        "description": txn.description,
        "type": txn.type.value,
        "category_id": txn.category_id,
        "category": (
            {
                "name": txn.category.name,
                "color": txn.category.color,
                "icon": txn.category.icon,
            }
            if txn.category
            else None
        ),
        "date": txn.date.isoformat(),
        "notes": txn.notes,
        "created_at": txn.created_at.isoformat(),
    }


def _investment_out(investment: Investment) -> dict[str, object]:
    return {
        "id": investment.id,
        "name": investment.name,
        "type": investment.type.value,
        "amount": _money(investment.amount),
        "current_value": _money(investment.current_value),
        "purchase_date": investment.purchase_date.isoformat(),
        "notes": investment.notes,
    }


@app.get("/api/health")
def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api/auth/register", status_code=201)
def register(data: RegisterIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.register(data)
    return {"user": profile_of(result.user), **_tokens_out(result.tokens)}


@app.post("/api/auth/login")
def login(data: LoginIn, auth: AuthService = Depends(get_auth_service)):
    result = auth.login(data)
    return {"user": profile_of(result.user), **_tokens_out(result.tokens)}


@app.post("/api/auth/refresh")
def refresh(
    data: Optional[RefreshIn] = None, auth: AuthService = Depends(get_auth_service)
):
    return _tokens_out(auth.refresh(data.refresh_token if data else None))


@app.post("/api/auth/logout")
def logout(
    data: Optional[RefreshIn] = None, auth: AuthService = Depends(get_auth_service)
):
    auth.logout(data.refresh_token if data else None)
    return {"message": "Logged out successfully"}


@app.get("/api/user/profile")
def get_profile(user: User = Depends(current_user)):
    return profile_of(user)


@app.put("/api/user/profile")
def update_profile(
    data: ProfileUpdateIn,
    user: User = Depends(current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return profile_of(auth.update_profile(user.id, data))


@app.post("/api/user/password")
def change_password(
    data: PasswordChangeIn,
    user: User = Depends(current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return _tokens_out(auth.change_password(user.id, data))


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, user.id).list_all(type)
    return {"categories": [_category_out(c) for c in categories]}


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return _category_out(CategoryService(db, user.id).create(data))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: str,
    data: CategoryUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return _category_out(CategoryService(db, user.id).update(category_id, data))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    CategoryService(db, user.id).delete(category_id)
    return Response(status_code=204)


@app.get("/api/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[TransactionType] = None,
    category_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    filters = TransactionFilters(
        type=type,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        search=search or None,
    )
    result = TransactionService(db, user.id).list(filters, page=page, page_size=limit)
    return {
        "transactions": [_transaction_out(t) for t in result.items],
        "pagination": {
            "current_page": result.page,
            "total_pages": result.total_pages,
            "total_items": result.total_items,
            "items_per_page": result.page_size,
        },
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user.id)
    txn = service.create(data)
    return _transaction_out(service.get(txn.id))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return _transaction_out(TransactionService(db, user.id).get(transaction_id))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user.id)
    service.update(transaction_id, data)
    return _transaction_out(service.get(transaction_id))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    TransactionService(db, user.id).delete(transaction_id)
    return Response(status_code=204)


@app.get("/api/reports/summary")
def report_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    period: Optional[Literal["week", "month", "quarter", "year"]] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    data = ReportService(db, user.id).summary(start_date, end_date, period)
    resolved = data["period"]
    return {
        "summary": {
            "total_income": _money(data["total_income"]),
            "total_expenses": _money(data["total_expenses"]),
            "net_income": _money(data["net_income"]),
            "period": {
                "name": resolved.slug,
                "start_date": resolved.start.isoformat() if resolved.start else None,
                "end_date": resolved.end.isoformat() if resolved.end else None,
            },
        },
        "category_breakdown": [
            {**row, "type": row["type"].value, "total": _money(row["total"])}
            for row in data["category_breakdown"]
        ],
        "recent_transactions": [
            _transaction_out(t) for t in data["recent_transactions"]
        ],
    }


@app.get("/api/reports/trends")
def report_trends(
    months: int = Query(6, ge=1, le=12),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    trends = ReportService(db, user.id).trends(months)
    return {
        "trends": [
            {**row, "type": row["type"].value, "total": _money(row["total"])}
            for row in trends
        ]
    }


@app.get("/api/investments")
def list_investments(
    user: User = Depends(current_user), db: Session = Depends(get_db)
):
    items = InvestmentService(db, user.id).list_all()
    return {"investments": [_investment_out(i) for i in items]}


@app.get("/api/investments/overview")
def investments_overview(
    user: User = Depends(current_user), db: Session = Depends(get_db)
):
    data = InvestmentService(db, user.id).overview()
    return {
        key: (value if key == "count" else _money(value)) for key, value in data.items()
    }


@app.post("/api/investments", status_code=201)
def create_investment(
    data: InvestmentIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return _investment_out(InvestmentService(db, user.id).create(data))


@app.put("/api/investments/{investment_id}")
def update_investment(
    investment_id: str,
    data: InvestmentUpdate,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    return _investment_out(InvestmentService(db, user.id).update(investment_id, data))


@app.delete("/api/investments/{investment_id}", status_code=204)
def delete_investment(
    investment_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    InvestmentService(db, user.id).delete(investment_id)
    return Response(status_code=204)
