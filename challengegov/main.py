import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import ChangesetError, NotFound, TransitionError
from .routers.accounts import router as accounts_router
from .routers.admin import router as admin_router
from .routers.challenges import router as challenges_router
from .routers.public import router as public_router
from .routers.submissions import router as submissions_router
from .startup import startup as _startup_handler


# Filter out health probes from access logs
class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            if str(args[2]).startswith("/health"):
                return False
        return True


uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.addFilter(HealthCheckFilter())

logger = logging.getLogger(__name__)

app = FastAPI(title="ChallengeGov API", version="1.0.0")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
if origins:
    wildcard = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else origins,
        # Credentials cannot be combined with wildcard origins.
        allow_credentials=False if wildcard else True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ChangesetError)
async def changeset_handler(request: Request, exc: ChangesetError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({"errors": exc.errors, "params": exc.params}),
    )


@app.exception_handler(TransitionError)
async def transition_handler(request: Request, exc: TransitionError):
    logger.info(f"Rejected transition on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


app.include_router(public_router)
app.include_router(accounts_router)
app.include_router(challenges_router)
app.include_router(submissions_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "version": app.version}


app.on_event("startup")(_startup_handler)
