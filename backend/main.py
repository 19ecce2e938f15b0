from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from dotenv import load_dotenv

load_dotenv()
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from database import Base, engine
from datetime import datetime
import os
import logging

import models  # noqa: F401  registers every table on Base.metadata
import routers.app_config as app_config
import routers.administrations as administrations
import routers.dose_schedules as dose_schedules
import routers.medication_orders as medication_orders
import routers.medication_stock as medication_stock
import routers.reminders as reminders
import routers.usage_history as usage_history
from scheduler import scheduler
from exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    InvalidTimingError,
    MedicationEngineError,
    NotFoundError,
    OperationCancelled,
    ValidationError,
)


LOG_DIR = "logs"
os.makedirs(LOG_DIR, exist_ok=True) # Create 'logs' directory if it doesn't exist

# Create a unique log file name based on current date/time
current_time_str = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
LOG_FILE = os.path.join(LOG_DIR, f"app_{current_time_str}.log")

# Configure the root logger
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    filename=LOG_FILE,
    filemode='a'
)

# Also log to the console
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
logging.getLogger().addHandler(console_handler)

logger = logging.getLogger(__name__)
logger.info("Application starting up...")
# --- End Logging Configuration ---


# Create database tables
Base.metadata.create_all(bind=engine)


def start_scheduler():
    if os.getenv("DISABLE_SCHEDULER", "").lower() in ("1", "true", "yes"):
        logger.info("Background scheduler disabled by DISABLE_SCHEDULER")
        return
    scheduler.start()
    logger.info("Background scheduler started")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(
    title="School Medication API",
    version="1.0.0",
    description="Medication scheduling and administration for school health offices",
    lifespan=lifespan,
)

allowed_origins_str = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")

# Split the string into a list, stripping any whitespace
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(',')]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS_CODES = {
    ValidationError: 422,
    InvalidTimingError: 422,
    InvalidStatusTransitionError: 409,
    InsufficientStockError: 409,
    OperationCancelled: 409,
    NotFoundError: 404,
}


@app.exception_handler(MedicationEngineError)
async def medication_engine_error_handler(request: Request, exc: MedicationEngineError):
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    logger.warning(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(medication_orders.router)
app.include_router(medication_stock.router)
app.include_router(dose_schedules.router)
app.include_router(administrations.router)
app.include_router(usage_history.router)
app.include_router(reminders.router)
app.include_router(app_config.router)


@app.get("/")
async def test_route():
    return {"message": "Welcome to the School Medication API!"}
