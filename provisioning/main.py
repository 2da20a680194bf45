"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from provisioning.config import settings
from provisioning.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from provisioning.routers import signup
from provisioning.services.errors import SignupError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Account Provisioning",
    description="Signup, invitation tickets and email-confirmed registration",
    version="0.1.0",
)

# CORS - restrict to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (last added runs outermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=1_048_576)


@app.exception_handler(SignupError)
async def signup_error_handler(request: Request, exc: SignupError) -> JSONResponse:
    """Terse cause codes, plus any extra fields the error carries."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.cause, **exc.extra},
    )


# Routers
app.include_router(signup.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
