import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from alibi_backend.app.routes.billing import ISSUED_CLIENT_KEY_HEADER, router as billing_router
from alibi_backend.app.services.billing import get_billing_config, log_missing_settings

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Alibi Entitlements API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_billing_config().cors_allow_origins),
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[ISSUED_CLIENT_KEY_HEADER],
)

app.include_router(billing_router)


@app.on_event("startup")
async def report_configuration() -> None:
    log_missing_settings(get_billing_config())


# run: uvicorn alibi_backend.main:app --host 0.0.0.0 --port 5000
