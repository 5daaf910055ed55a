"""
AgentPay Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

from typing import Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MerchantConfig(BaseSettings):
    """Configuration for the merchant (resource server)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    merchant_host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    merchant_port: int = Field(default=3001, description="Port to bind the server to")
    base_url: str = Field(default="http://localhost:3001", description="Public URL used in resource links")

    # Network Configuration
    network: Literal["base-sepolia", "base"] = Field(default="base-sepolia")

    # Payment Configuration
    usdc_contract_address: str = Field(
        default="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        description="USDC contract address on Base"
    )
    token_name: str = Field(default="USDC", description="EIP-712 domain name of the asset")
    token_version: str = Field(default="2", description="EIP-712 domain version of the asset")
    merchant_address: str = Field(default="", description="Wallet address that receives payments")
    payment_timeout_seconds: int = Field(default=300, gt=0, description="maxTimeoutSeconds advertised in 402s")

    # Settlement
    ledger_mode: Literal["simulated", "facilitator"] = Field(default="simulated")
    facilitator_url: str = Field(default="https://x402.org/facilitator")
    facilitator_api_key: str = Field(default="")
    purchase_rate_limit: str = Field(default="30/minute")

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Development
    reload: bool = Field(default=False)

    @field_validator("base_url", "facilitator_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class BuyerConfig(BaseSettings):
    """Configuration for the buyer agent"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Wallet Configuration
    buyer_private_key: str = Field(default="", description="Private key for payments")
    buyer_address: str = Field(default="", description="Buyer wallet address")

    # Merchant Connection
    merchant_url: str = Field(default="http://localhost:3001", description="URL of the merchant server")
    request_timeout: float = Field(default=30.0, gt=0)

    # Fused fetch-with-payment service
    fetch_with_payment_url: str = Field(default="", description="Facilitator fetch-with-payment endpoint")
    fetch_api_key: str = Field(default="")
    funding_link: str = Field(default="https://faucet.circle.com/")

    # Network Configuration
    network: Literal["base-sepolia", "base"] = Field(default="base-sepolia")
    usdc_contract_address: str = Field(default="0x036CbD53842c5426634e7929541eC2318f3dCF7e")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    @field_validator("buyer_private_key")
    @classmethod
    def validate_private_key(cls, v):
        if v and not v.startswith("0x"):
            return f"0x{v}"
        return v

    @field_validator("merchant_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


# Singleton instances, only read at entry points
_merchant_config: MerchantConfig | None = None
_buyer_config: BuyerConfig | None = None


def get_merchant_config() -> MerchantConfig:
    """Get or create merchant configuration singleton"""
    global _merchant_config
    if _merchant_config is None:
        _merchant_config = MerchantConfig()
    return _merchant_config


def get_buyer_config() -> BuyerConfig:
    """Get or create buyer configuration singleton"""
    global _buyer_config
    if _buyer_config is None:
        _buyer_config = BuyerConfig()
    return _buyer_config
