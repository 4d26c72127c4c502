# server/api/payment_router.py

import os
import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from server.api.deps import get_gateway
from server.db.session import SessionLocal
from server.services import payment_webhook

load_dotenv()

router = APIRouter()

# Должен совпадать с secret_token, переданным в setWebhook
WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")


# ---------- ВЕБХУК ОТ TELEGRAM ----------
@router.post("/webhook/telegram")
async def telegram_webhook(
    payload: Dict[str, Any],
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    gateway=Depends(get_gateway),
):
    """
    Принимаем сырой update от Telegram: pre_checkout_query или message.successful_payment.
    Отвечаем 200 на всё, что смогли разобрать или осознанно отклонили;
    500 только если недоступна база, чтобы Telegram прислал update повторно.
    """
    if WEBHOOK_SECRET and x_telegram_bot_api_secret_token != WEBHOOK_SECRET:
        logging.warning("Webhook call with a wrong secret token rejected")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    logging.info(
        "[WEBHOOK] update_id=%s keys=%s", payload.get("update_id"), sorted(payload.keys())
    )

    try:
        async with SessionLocal() as db:
            result = await payment_webhook.handle_update(db, gateway, payload)
    except SQLAlchemyError:
        logging.exception("Store failure while handling update %s", payload.get("update_id"))
        return JSONResponse(status_code=500, content={"ok": False, "error": "Store unavailable"})

    return {"ok": True, "result": result.outcome}
