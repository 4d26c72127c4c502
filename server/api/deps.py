from fastapi import HTTPException, Request


def get_gateway(request: Request):
    """The Telegram gateway built at startup (see ``server/main.py``)."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Telegram gateway is not configured")
    return gateway


def get_optional_gateway(request: Request):
    return getattr(request.app.state, "gateway", None)
