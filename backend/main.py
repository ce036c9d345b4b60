import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional, Tuple

import uvicorn
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.classify import DEFAULT_UNKNOWN_MESSAGE, USER_MESSAGES, status_for_kind
from services.config import Settings, load_settings
from services.gemini import GeminiClient, GenerationClient
from services.models import ErrorKind, Failure, TryOnOutcome, UploadedImage
from services.vton import generate_try_on

logger = logging.getLogger(__name__)

# File upload security limits
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 10 * 1024 * 1024))  # 10MB default
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif"}


class RelayRequest(BaseModel):
    # Bare base64 payloads, no data-URI header
    personImage: Optional[str] = None
    clothingImage: Optional[str] = None


class RelayResult(BaseModel):
    result: str


class RelayError(BaseModel):
    error: str
    kind: ErrorKind


class RateLimiter:
    """
    Simple best-effort in-memory rate limiter (per-instance).
    """

    def __init__(self, limit: int, window_seconds: int = 60):
        self.limit = limit
        self.window_seconds = window_seconds
        self._buckets: Dict[str, Tuple[int, float]] = {}

    def allow(self, key: str) -> bool:
        """Returns True if allowed, False if rate-limited."""
        if self.limit <= 0:
            return True
        now = time.time()
        self._prune(now)
        count, expires_at = self._buckets.get(key, (0, 0.0))
        if expires_at <= now:
            self._buckets[key] = (1, now + self.window_seconds)
            return True
        if count >= self.limit:
            return False
        self._buckets[key] = (count + 1, expires_at)
        return True

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._buckets.items() if expires_at <= now]
        for k in expired:
            del self._buckets[k]


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    if request.headers.get("x-real-ip"):
        return request.headers["x-real-ip"]
    return request.client.host if request.client else "unknown"


def validate_image_file(file: UploadFile) -> Tuple[bool, str]:
    """Validate that uploaded file is a valid image"""
    if not file.content_type or file.content_type.lower() not in ALLOWED_IMAGE_TYPES:
        return False, f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"

    if not file.filename:
        return False, "Filename is required"

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        return False, f"Invalid file extension. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    return True, ""


def error_response(kind: ErrorKind, message: Optional[str] = None) -> JSONResponse:
    body = RelayError(error=message or USER_MESSAGES.get(kind, DEFAULT_UNKNOWN_MESSAGE), kind=kind)
    return JSONResponse(status_code=status_for_kind(kind), content=body.model_dump(mode="json"))


def create_app(settings: Optional[Settings] = None, client: Optional[GenerationClient] = None) -> FastAPI:
    """
    Build the relay application.

    The relay always talks to Gemini directly; it is the component that holds
    the credential, so it never uses the relay client itself.
    """
    settings = settings or load_settings()
    client = client or GeminiClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.client.aclose()

    app = FastAPI(title="Try-On Relay API", lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client
    app.state.rate_limiter = RateLimiter(settings.rate_limit_per_minute)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies get the relay error shape instead of FastAPI's {"detail": [...]}
        error_types = [e.get("type") for e in exc.errors()]
        logger.warning(f"Rejected malformed request to {request.url.path}: {error_types}")
        return error_response(ErrorKind.INVALID_INPUT, "Missing images")

    async def run_try_on(request: Request, person: UploadedImage, garment: UploadedImage) -> TryOnOutcome:
        return await generate_try_on(
            person,
            garment,
            client=request.app.state.client,
            settings=request.app.state.settings,
        )

    def precheck(request: Request, route: str) -> Optional[JSONResponse]:
        ip = get_client_ip(request)
        if not request.app.state.rate_limiter.allow(f"{route}:{ip}"):
            logger.warning(f"Rate limit exceeded for {route} from {ip}")
            return error_response(ErrorKind.RATE_LIMITED)
        if not request.app.state.settings.gemini_api_key:
            logger.error("GEMINI_API_KEY is not set in environment variables")
            return error_response(ErrorKind.MISCONFIGURED, "Server configuration error")
        return None

    @app.get("/")
    async def root():
        return {"message": "Try-On Relay API is running"}

    @app.get("/health")
    async def health(request: Request):
        s = request.app.state.settings
        return {"status": "ok", "configured": bool(s.gemini_api_key), "model": s.gemini_model}

    @app.post(
        "/api/generate-try-on",
        response_model=RelayResult,
        responses={code: {"model": RelayError} for code in (400, 403, 422, 429, 500, 502, 503)},
    )
    async def relay_generate_try_on(request: Request, body: RelayRequest):
        """
        Relay endpoint: forwards two base64 images plus the fixed prompt to Gemini
        and answers with {"result": dataURI} or {"error": message, "kind": kind}.
        """
        if not body.personImage or not body.clothingImage:
            return error_response(ErrorKind.INVALID_INPUT, "Missing images")
        blocked = precheck(request, "generate-try-on")
        if blocked is not None:
            return blocked

        try:
            outcome = await run_try_on(
                request,
                UploadedImage.from_data_uri(body.personImage),
                UploadedImage.from_data_uri(body.clothingImage),
            )
        except Exception as e:
            logger.error(f"Error in generate-try-on endpoint: {type(e).__name__}: {e}", exc_info=True)
            return error_response(ErrorKind.UNKNOWN)

        if isinstance(outcome, Failure):
            return error_response(outcome.kind, outcome.message)
        return RelayResult(result=outcome.image_reference)

    @app.post("/api/try-on")
    async def try_on(
        request: Request,
        user_image: Optional[UploadFile] = File(None),
        clothing_image: Optional[UploadFile] = File(None),
    ):
        """
        Multipart variant for clients that upload raw files instead of base64.
        """
        if user_image is None or clothing_image is None:
            return error_response(ErrorKind.INVALID_INPUT)

        uploads = []
        for label, upload in (("User", user_image), ("Clothing", clothing_image)):
            is_valid, error_msg = validate_image_file(upload)
            if not is_valid:
                return error_response(ErrorKind.INVALID_INPUT, f"{label} image validation failed: {error_msg}")
            contents = await upload.read()
            if len(contents) > MAX_FILE_SIZE:
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": f"{label} image too large. Maximum size: {MAX_FILE_SIZE / (1024 * 1024):.1f}MB",
                        "kind": ErrorKind.INVALID_INPUT.value,
                    },
                )
            uploads.append(UploadedImage.from_bytes(contents, upload.content_type))

        blocked = precheck(request, "try-on")
        if blocked is not None:
            return blocked

        logger.info(f"Try-on request received: {user_image.filename} + {clothing_image.filename}")
        try:
            outcome = await run_try_on(request, uploads[0], uploads[1])
        except Exception as e:
            logger.error(f"Error in try-on endpoint: {type(e).__name__}: {e}", exc_info=True)
            return error_response(ErrorKind.UNKNOWN)

        if isinstance(outcome, Failure):
            return error_response(outcome.kind, outcome.message)
        return {"image_url": outcome.image_reference}

    return app


_settings = load_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app(_settings)

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("RELOAD", "0") == "1",
        timeout_keep_alive=120,
        timeout_graceful_shutdown=30,
    )
