"""
AgentPay Merchant Server
FastAPI resource server whose purchase endpoint is gated by x402
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from agentpay.config import MerchantConfig, get_merchant_config
from agentpay.events import EventBus
from agentpay.logs import configure_logging
from agentpay.merchant.catalog import ProductCatalog
from agentpay.merchant.dependencies import build_limiter
from agentpay.merchant.routers import general, products, purchase
from agentpay.merchant.settlement import SettlementEngine
from agentpay.payments.ledger import FacilitatorLedger, Ledger, SimulatedLedger

logger = structlog.get_logger()


def build_ledger(config: MerchantConfig) -> Ledger:
    """Ledger collaborator selected by ``ledger_mode``"""
    if config.ledger_mode == "facilitator":
        return FacilitatorLedger(
            facilitator_url=config.facilitator_url,
            api_key=config.facilitator_api_key,
        )
    return SimulatedLedger()


def build_engine(
    config: MerchantConfig, ledger: Ledger, events: Optional[EventBus] = None
) -> SettlementEngine:
    return SettlementEngine(
        ledger=ledger,
        pay_to=config.merchant_address,
        asset=config.usdc_contract_address,
        network=config.network,
        token_name=config.token_name,
        token_version=config.token_version,
        max_timeout_seconds=config.payment_timeout_seconds,
        events=events,
    )


def create_app(
    config: Optional[MerchantConfig] = None,
    catalog: Optional[ProductCatalog] = None,
    ledger: Optional[Ledger] = None,
    engine: Optional[SettlementEngine] = None,
    events: Optional[EventBus] = None,
) -> FastAPI:
    """
    Build the merchant app.

    Collaborators that are not supplied are built from ``config``; an
    invalid merchant address raises ConfigError here, before serving.
    """
    config = config or get_merchant_config()
    ledger = ledger or build_ledger(config)
    engine = engine or build_engine(config, ledger, events)
    catalog = catalog if catalog is not None else ProductCatalog()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for the FastAPI app"""
        logger.info(
            "merchant_starting",
            host=config.merchant_host,
            port=config.merchant_port,
            network=config.network,
            ledger_mode=config.ledger_mode,
            products=len(catalog)
        )
        yield
        if isinstance(ledger, FacilitatorLedger):
            await ledger.close()
        logger.info("merchant_shutting_down")

    app = FastAPI(
        title="AgentPay Merchant",
        description="Product catalog with per-purchase x402 payments",
        version="0.1.0",
        lifespan=lifespan
    )

    app.state.config = config
    app.state.catalog = catalog
    app.state.ledger = ledger
    app.state.engine = engine
    limiter = build_limiter()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-payment-response"],
    )

    app.include_router(general.router)
    app.include_router(products.router)
    app.include_router(purchase.router)
    purchase.add_purchase_route(app, limiter, config.purchase_rate_limit)

    return app


def main():
    import uvicorn
    config = get_merchant_config()
    configure_logging(config.log_level, config.log_format)

    uvicorn.run(
        create_app(config),
        host=config.merchant_host,
        port=config.merchant_port,
        log_level=config.log_level.lower()
    )


if __name__ == "__main__":
    main()
