import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from vaultdrop.core.config import settings
from vaultdrop.core.errors import DeliveryError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

@app.exception_handler(DeliveryError)
async def delivery_error_handler(request: Request, exc: DeliveryError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.kind}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

from vaultdrop.modules.worker.runner import worker

@app.on_event("startup")
async def startup_event():
    await worker.start(housekeeping_interval=settings.HOUSEKEEPING_INTERVAL_SECONDS)

@app.on_event("shutdown")
async def shutdown_event():
    await worker.stop()

@app.get("/")
def root():
    return {"message": "Welcome to VaultDrop Delivery API", "docs": "/docs"}

from fastapi.middleware.cors import CORSMiddleware
from vaultdrop.modules.auth.router import router as auth_router
from vaultdrop.modules.products.router import router as products_router
from vaultdrop.modules.uploads.router import router as uploads_router
from vaultdrop.modules.transfers.router import router as transfers_router
from vaultdrop.modules.payments.router import router as payments_router
from vaultdrop.modules.keys.router import router as keys_router
from vaultdrop.modules.delivery.router import router as delivery_router
from vaultdrop.modules.notifications.router import router as notifications_router

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from vaultdrop.core.middleware import RateLimitMiddleware
app.add_middleware(
    RateLimitMiddleware,
    limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    path_limits={"/keys/claim": settings.CLAIM_RATE_LIMIT_PER_MINUTE},
)

# Upload routes live under /products and /uploads, so they mount at the API root
app.include_router(uploads_router, prefix=settings.API_V1_STR, tags=["uploads"])
app.include_router(auth_router, prefix=f"{settings.API_V1_STR}/auth", tags=["auth"])
app.include_router(products_router, prefix=f"{settings.API_V1_STR}/products", tags=["products"])
app.include_router(transfers_router, prefix=f"{settings.API_V1_STR}/transfers", tags=["transfers"])
app.include_router(payments_router, prefix=f"{settings.API_V1_STR}/payments", tags=["payments"])
app.include_router(keys_router, prefix=f"{settings.API_V1_STR}/keys", tags=["keys"])
app.include_router(delivery_router, prefix=f"{settings.API_V1_STR}/delivery", tags=["delivery"])
app.include_router(notifications_router, prefix=f"{settings.API_V1_STR}/notifications", tags=["notifications"])
