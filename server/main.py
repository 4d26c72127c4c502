import logging
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from server.admin.routes import admin_router
from server.api import order_router, payment_router, support_router
from server.api.user_router import router as user_router
from server.services.errors import NotFoundError, ValidationError
from telegram_bot.gateway import build_gateway

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Один клиент Telegram на процесс
    gateway = build_gateway()
    if gateway is not None:
        await gateway.bot.initialize()
    app.state.gateway = gateway
    try:
        yield
    finally:
        if gateway is not None:
            await gateway.bot.shutdown()


app = FastAPI(lifespan=lifespan)

app.include_router(admin_router)
app.include_router(order_router.router, prefix="/api")
app.include_router(user_router, prefix="/api")
app.include_router(support_router.router, prefix="/api")
app.include_router(payment_router.router)


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.message, "field": exc.field})


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": f"{exc.entity} not found"})


@app.exception_handler(SQLAlchemyError)
async def handle_store_failure(request: Request, exc: SQLAlchemyError):
    logging.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Store unavailable"})


@app.get("/health")
async def health():
    return {"status": "OK", "timestamp": datetime.utcnow().isoformat()}
