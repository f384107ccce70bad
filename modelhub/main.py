import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .core.db import close_client, ensure_indexes, get_database
from .core.exceptions import ServiceError
from .core.log_config import configure_logging, request_id_ctx
from .api.deps import get_runtimes
from .api.routers.auth_router import router as auth_router
from .api.routers.ai_router import router as ai_router
from .api.routers.datasets_router import router as datasets_router
from .services.model_runtime_service import ModelRuntimeRegistry

configure_logging()
log = logging.getLogger("modelhub.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_database())
    except PyMongoError as e:
        log.error("Could not ensure MongoDB indexes: %s", e)
    log.info("%s started", settings.app_name)
    yield
    close_client()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    token = request_id_ctx.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


# Error envelope: {success: false, message, error?}
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.cause)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    content = {"success": False, **detail} if isinstance(detail, dict) else {"success": False, "message": detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"loc": [], "msg": "Invalid request"}
    message = f"{'.'.join(first['loc'][1:]) or 'request'}: {first['msg']}"
    return JSONResponse(status_code=400, content={"success": False, "message": message, "errors": errors})


@app.get("/health")
def health(runtimes: ModelRuntimeRegistry = Depends(get_runtimes)):
    return {"ok": True, "service": settings.app_name, "liveModels": len(runtimes.live_model_ids())}


# Routers
app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(ai_router, prefix=settings.api_prefix)
app.include_router(datasets_router, prefix=settings.api_prefix)
