"""
Pytest configuration and shared fixtures
"""

import httpx
import pytest
from fastapi.testclient import TestClient
from eth_account import Account

from agentpay.config import MerchantConfig
from agentpay.events import EventBus
from agentpay.merchant.catalog import DEFAULT_PRODUCTS, ProductCatalog
from agentpay.models import Product
from agentpay.merchant.server import create_app
from agentpay.merchant.settlement import SettlementEngine
from agentpay.payments.ledger import SimulatedLedger
from agentpay.payments.preparer import PaymentProofPreparer
from agentpay.payments.signing import LocalAccountSigner

USDC_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
MERCHANT_URL = "http://merchant.test"

BUYER_KEY = "0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"
MERCHANT_KEY = "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef"


class CountingTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and records every request that goes through it"""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.requests = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def test_buyer_account():
    """Create a test buyer account"""
    return Account.from_key(BUYER_KEY)


@pytest.fixture
def test_merchant_account():
    """Create a test merchant account"""
    return Account.from_key(MERCHANT_KEY)


@pytest.fixture
def signer() -> LocalAccountSigner:
    return LocalAccountSigner(BUYER_KEY)


@pytest.fixture
def preparer(signer) -> PaymentProofPreparer:
    return PaymentProofPreparer(signer)


@pytest.fixture
def ledger() -> SimulatedLedger:
    """Simulated ledger with no balance limit"""
    return SimulatedLedger()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def engine(ledger, test_merchant_account) -> SettlementEngine:
    return SettlementEngine(
        ledger=ledger,
        pay_to=test_merchant_account.address,
        asset=USDC_ADDRESS,
        network="base-sepolia",
    )


@pytest.fixture
def catalog() -> ProductCatalog:
    """Default products plus a one-dollar item"""
    return ProductCatalog(DEFAULT_PRODUCTS + [
        Product(
            id="guide-ebook",
            name="Field Guide E-Book",
            description="Downloadable field guide",
            features=["PDF", "EPUB"],
            price="1.00",
            category="books",
        ),
    ])


@pytest.fixture
def merchant_config(test_merchant_account) -> MerchantConfig:
    return MerchantConfig(
        merchant_address=test_merchant_account.address,
        base_url=MERCHANT_URL,
        usdc_contract_address=USDC_ADDRESS,
    )


@pytest.fixture
def app(merchant_config, catalog, ledger, engine):
    return create_app(config=merchant_config, catalog=catalog, ledger=ledger, engine=engine)


@pytest.fixture
def client(app) -> TestClient:
    """Create FastAPI test client (sync)"""
    return TestClient(app)


@pytest.fixture
def merchant_transport(app) -> CountingTransport:
    """In-process transport to the merchant app that counts requests"""
    return CountingTransport(httpx.ASGITransport(app=app))
