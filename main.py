import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

import config
import database
from admin_routes import router as admin_router
from class_teacher_routes import router as class_teacher_router
from errors import register_error_handlers
from security import token_subject
from storage import get_storage
from student_routes import router as student_router
from subject_teacher_routes import router as subject_teacher_router

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes()
        except Exception:
            logger.exception("Could not ensure database indexes")
    else:
        logger.warning("DATABASE_URL not set; running without a database")
    yield


app = FastAPI(title="School Portal API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# -------------------- Static files -------------------- #
app.mount("/static", StaticFiles(directory=get_storage().root), name="static")


# -------------------- Request log middleware -------------------- #
@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %s user=%s %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        token_subject(request) or "anonymous",
        (time.perf_counter() - start) * 1000,
    )
    return response


# -------------------- Routers -------------------- #
app.include_router(admin_router)
app.include_router(class_teacher_router)
app.include_router(subject_teacher_router)
app.include_router(student_router)


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "School Portal API is running"}


@app.get("/health")
def health():
    status = {"backend": "ok", "database": "not configured"}
    if database.db is not None:
        try:
            database.db.command("ping")
            status["database"] = "ok"
        except Exception as e:
            logger.warning("Database ping failed: %s", e)
            status["database"] = "unavailable"
    return status


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
