from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import Session
import logging
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .core import limiter
from .core.config import settings
from .core.errors import InvalidArgument, LedgerError, status_code_for
from .core.security import authenticate, ensure_admin, issue_api_key
from .database import create_db_and_tables, get_write_session, engine
from .api import transactions_router, reports_router, reconcile_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Stock Ledger API")

# Setup rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=status_code_for(exc), content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = InvalidArgument("Invalid request", errors=exc.errors())
    return JSONResponse(status_code=status_code_for(error), content=jsonable_encoder(error.to_dict()))


# Create tables on startup
@app.on_event("startup")
def on_startup():
    create_db_and_tables()
    logger.info("Database tables created.")
    with Session(engine) as session:
        api_key = ensure_admin(
            session, settings.ADMIN_USERNAME, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD
        )
    if api_key:
        logger.info("Admin user created with API key: %s", api_key)
    else:
        logger.info("Admin user %s exists", settings.ADMIN_USERNAME)


# Include routers
app.include_router(
    transactions_router,
    prefix="/transactions",
    tags=["Transactions"]
)
app.include_router(
    reports_router,
    prefix="/reports",
    tags=["Reports"]
)
app.include_router(
    reconcile_router,
    prefix="/reconcile",
    tags=["Reconciliation"]
)

@app.post("/generate-api-key")
def generate_api_key(
    username: str,
    password: str,
    session: Session = Depends(get_write_session)
):
    user = authenticate(session, username, password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password"
        )
    return {"api_key": issue_api_key(session, user)}

@app.get("/")
def read_root():
    return {"message": "Welcome to Stock Ledger API"}
