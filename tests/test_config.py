"""
Tests for configuration management
"""

import pytest
from pydantic import ValidationError

from agentpay.config import BuyerConfig, MerchantConfig


class TestConfigurationLoading:
    """Test configuration loading and validation"""

    def test_merchant_config_defaults(self, monkeypatch):
        """Test merchant config loads with defaults"""
        monkeypatch.delenv("MERCHANT_PORT", raising=False)
        config = MerchantConfig(_env_file=None)

        assert config.merchant_host == "0.0.0.0"
        assert config.merchant_port == 3001
        assert config.network == "base-sepolia"
        assert config.ledger_mode == "simulated"
        assert config.payment_timeout_seconds == 300

    def test_buyer_config_defaults(self):
        """Test buyer config loads with defaults"""
        config = BuyerConfig(_env_file=None)

        assert config.merchant_url == "http://localhost:3001"
        assert config.funding_link == "https://faucet.circle.com/"
        assert config.log_format == "text"

    def test_config_validates_private_key_format(self):
        """Test that private keys are validated and formatted"""
        # Without 0x prefix
        config = BuyerConfig(buyer_private_key="1234abcd")
        assert config.buyer_private_key.startswith("0x")

        # With 0x prefix
        config = BuyerConfig(buyer_private_key="0x1234abcd")
        assert config.buyer_private_key == "0x1234abcd"

    def test_urls_lose_trailing_slash(self):
        assert MerchantConfig(base_url="http://shop.test/").base_url == "http://shop.test"
        assert BuyerConfig(merchant_url="http://shop.test/").merchant_url == "http://shop.test"

    def test_unknown_network_rejected(self):
        with pytest.raises(ValidationError):
            MerchantConfig(network="ethereum")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            MerchantConfig(payment_timeout_seconds=0)

    def test_config_environment_variables(self, monkeypatch):
        """Test that config loads from environment variables"""
        monkeypatch.setenv("MERCHANT_PORT", "9000")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LEDGER_MODE", "facilitator")

        config = MerchantConfig()

        assert config.merchant_port == 9000
        assert config.log_level == "DEBUG"
        assert config.ledger_mode == "facilitator"
