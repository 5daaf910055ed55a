from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
import structlog

from agentpay.config import MerchantConfig
from agentpay.merchant.catalog import ProductCatalog
from agentpay.merchant.settlement import SettlementEngine
from agentpay.payments.ledger import Ledger

logger = structlog.get_logger()


def get_client_key(request: Request) -> str:
    """Get client identifier for rate limiting - uses IP address"""
    return get_remote_address(request)


def build_limiter() -> Limiter:
    """One limiter per app so counters never leak between app instances"""
    return Limiter(key_func=get_client_key)


# Collaborators are attached to app.state by create_app

def get_config(request: Request) -> MerchantConfig:
    return request.app.state.config


def get_catalog(request: Request) -> ProductCatalog:
    return request.app.state.catalog


def get_engine(request: Request) -> SettlementEngine:
    return request.app.state.engine


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger
