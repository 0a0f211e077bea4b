import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from ledgerbook.config import settings
from ledgerbook.database import StoreUnavailable, init_db
from ledgerbook.routers import account, auth, health, otp, payouts
from ledgerbook.services.email import email_sender
from ledgerbook.services.storage import LocalStorage

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="LedgerBook Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(otp.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(account.router, prefix="/api")
app.include_router(payouts.router, prefix="/api")


@app.exception_handler(StoreUnavailable)
def store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    detail = str(exc) if settings.expose_error_details else "Service temporarily unavailable"
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": detail},
    )


@app.on_event("startup")
def startup() -> None:
    init_db()
    LOGGER.info("Database schema ready")
    email_sender.verify_connection()


@app.get("/uploads/{filename}")
def get_upload(filename: str) -> FileResponse:
    path = LocalStorage(settings.upload_dir).path_for(filename)
    if path is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid filename",
        )
    if not path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )
    return FileResponse(path)


@app.get("/")
def root():
    return {"status": "Backend running"}
