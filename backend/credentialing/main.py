"""
Supplier Credentialing - FastAPI Application

Main entry point for the supplier credentialing backend.

Pipeline:
- Credential (DRAFT) → Registry validation → PENDING_COMPLIANCE
- Compliance analysis → INVITATION_PENDING | COMPLIANCE_REJECTED | manual review
- Invitation → Onboarding → Contract → ACTIVE
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import init_db
from .routers import compliance_router, credentials_router, integrations_router
from .routers.errors import ERROR_STATUS_CODES
from .services.result import ServiceError
from .services.taxid import InvalidTaxIdError

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info("Credentialing API started")
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Supplier Credentialing",
    description="""
    Supplier Credentialing - vetting of textile suppliers for brands

    ## Pipeline
    1. **Credential**: brand opens an application for a CNPJ
    2. **Registry validation**: company lookup with provider fallback
    3. **Compliance**: credit + registry signals → score, risk tier, recommendation
    4. **Manual review**: human override for high / critical risk
    5. **Invitation, onboarding, contract** → ACTIVE supplier
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(credentials_router)
app.include_router(compliance_router)
app.include_router(integrations_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=ERROR_STATUS_CODES[exc.kind], content={"detail": exc.message})


@app.exception_handler(InvalidTaxIdError)
async def invalid_tax_id_handler(request: Request, exc: InvalidTaxIdError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Supplier Credentialing",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m credentialing.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
