from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from storefront.api.routes import router
from storefront.core.config import settings
from storefront.core.errors import StorefrontError
from storefront.messaging.consumer import consumer
from storefront.messaging.producer import producer
from storefront.caching.redis_client import redis_client
from storefront.data.database import engine, Base
import logging
import uvicorn

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up...")

    # Create DB tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        await producer.connect()
    except Exception:
        logger.warning("Starting without RabbitMQ producer; publishing will retry")
    await consumer.connect() # Starts background consuming task
    await redis_client.connect()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await producer.close()
    await redis_client.close()
    if consumer.connection:
        await consumer.connection.close()
    await engine.dispose()

app = FastAPI(title="Storefront Order Service", lifespan=lifespan)

@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "message": problems},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Global exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(exc)},
    )

app.include_router(router)

@app.get("/")
async def root():
    return {"message": "Storefront order service is running"}

def main():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())

if __name__ == "__main__":
    main()
