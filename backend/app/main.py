# SmartHands Billing backend entrypoint.

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import billing
from backend.app.api import invoices
from backend.app.core.dev_seed import ensure_default_dev_admin
from backend.app.core.logging import setup_logging
from backend.app.core.settings import get_settings
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine

settings = get_settings()
setup_logging()

app = FastAPI(title=settings.app_name, version=settings.api_version)

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router)
app.include_router(invoices.router)


@app.get("/")
def read_root():
    return {"app": "SmartHands Billing backend", "status": "ok"}


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.on_event("startup")
def prepare_database():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_default_dev_admin(db)
    finally:
        db.close()
