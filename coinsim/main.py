import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import init_db
from .exceptions import CoinsimError, TradeRejected
from .routers import auth, crypto, portfolio, trading

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger("Coinsim")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Database
    init_db()
    yield


app = FastAPI(title=settings.PROJECT_NAME, version=settings.PROJECT_VERSION, lifespan=lifespan)

# Include Routers
app.include_router(auth.router, prefix="/api")
app.include_router(crypto.router, prefix="/api")
app.include_router(portfolio.router, prefix="/api")
app.include_router(trading.router, prefix="/api")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CoinsimError)
async def coinsim_error_handler(request: Request, exc: CoinsimError):
    if isinstance(exc, TradeRejected):
        logger.info(f"Rejected {request.url.path}: {exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # The rejected input is left out: it may be inf/NaN, which JSON cannot carry
    details = [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(details)},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/api/health")
def health_check():
    return {"status": "ok", "message": "Coinfolio Sim Backend Online"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
