import logging

import uvicorn
from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from account import account_router
from auth import auth_router
from bills import bills_router
from config import LOG_LEVEL, REMINDER_HOUR, SCHEDULER_ENABLED
from database import Base, engine
from notifications import notifications_router
from reminders import scheduled_sweep
from router import router
from teams import invitations_router, teams_router

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="BillSmart API")
scheduler = BackgroundScheduler()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "body"
        details.setdefault(field, []).append(error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid data", "details": details},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.on_event("startup")
def start_scheduler():
    if not SCHEDULER_ENABLED:
        return
    # Send due payment reminders once a day
    scheduler.add_job(
        scheduled_sweep, "cron", hour=REMINDER_HOUR, minute=0, id="reminder-sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Reminder sweep scheduled daily at %02d:00", REMINDER_HOUR)


@app.on_event("shutdown")
def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)


app.include_router(auth_router, prefix="/auth", tags=["authentication"])
app.include_router(account_router, tags=["profile"])
app.include_router(bills_router, tags=["bills"])
app.include_router(teams_router, tags=["teams"])
app.include_router(invitations_router, tags=["invitations"])
app.include_router(notifications_router, tags=["notifications"])
app.include_router(router, tags=["workspace"])


@app.get("/")
def home():
    return {"message": "Welcome to BillSmart API"}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
