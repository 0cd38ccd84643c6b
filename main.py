import os
import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from database import ensure_indexes, utcnow
from realtime import CORS_ORIGINS, sio
from security import APP_ENV
from routers import auth, challenges, collaboration_requests, collaborations, problems, projects, users

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="SkillSync API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(problems.router)
app.include_router(collaboration_requests.router)
app.include_router(collaborations.router)
app.include_router(projects.router)
app.include_router(challenges.router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"message": "Server error"}
    if APP_ENV != "production":
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def read_root():
    return {"name": "SkillSync API", "status": "ok"}


@app.get("/api/health")
def health():
    return {"status": "OK", "timestamp": utcnow().isoformat()}


@app.get("/test")
def database_diagnostics():
    """Connection check for local setups; not served in production."""
    if APP_ENV == "production":
        raise StarletteHTTPException(status_code=404, detail="Not Found")

    db = database.db
    if db is None:
        return {"backend": "running", "database": "not configured", "collections": []}
    try:
        collections = sorted(db.list_collection_names())
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        return {"backend": "running", "database": "unreachable", "database_name": db.name, "collections": []}
    return {"backend": "running", "database": "connected", "database_name": db.name, "collections": collections}


asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(asgi_app, host="0.0.0.0", port=port)
