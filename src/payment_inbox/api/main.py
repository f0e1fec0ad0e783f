from fastapi import FastAPI, Request, Response
from prometheus_client import REGISTRY, generate_latest, CONTENT_TYPE_LATEST
from payment_inbox.infrastructure.db import healthcheck
from payment_inbox.api.webhooks import router as webhooks_router
from payment_inbox.api.admin import router as admin_router
from payment_inbox.config import get_settings
import logging
import json

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Payment Inbox", version="0.1.0")
app.include_router(webhooks_router)
app.include_router(admin_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.getLogger("app").error(json.dumps({
        "event": "error",
        "path": request.url.path,
        "detail": str(exc),
        "type": exc.__class__.__name__,
    }))
    return Response(content=json.dumps({"error": "internal_error"}), media_type="application/json", status_code=500)


@app.get("/health")
def health():
    db_ok = False
    try:
        db_ok = healthcheck()
    except Exception as e:
        logging.getLogger("app").warning("database healthcheck failed: %s", e)
    return {"status": "ok" if db_ok else "degraded", "database": db_ok}


@app.get("/metrics")
def metrics():
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
