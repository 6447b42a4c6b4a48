"""FastAPI dependencies resolving the components built at startup."""

from fastapi import Request

from app.core.config import Settings
from app.services.billing import BillingEngine
from app.services.reading_store import ReadingStore


def get_settings(request: Request) -> Settings:
    """Settings the application was started with."""
    return request.app.state.settings


def get_store(request: Request) -> ReadingStore:
    """Persistence handle for this application."""
    return request.app.state.store


def get_billing_engine(request: Request) -> BillingEngine:
    """Billing engine shared by request handlers."""
    return request.app.state.billing_engine
