# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Project Sentience"
    PROJECT_DESCRIPTION: str = "Autonomous Identity & Reputation Protocol for AI Agents"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "production"  # "development" exposes error detail in 500s
    LOG_LEVEL: str = "INFO"

    # x402 payment settings
    X402_PAY_TO_ADDRESS: str = "0x0d0b4c628d57f3ffafa1259f1403595c1c07d0e7a0995018fd59e72d1aebfc8c"
    X402_FACILITATOR_URL: AnyHttpUrl = "https://x402-navy.vercel.app/facilitator"
    X402_NETWORK: str = "aptos:2"  # chain id 2 = testnet
    X402_NETWORK_LABEL: str = "aptos:testnet"
    X402_ASSET: str = "0xa"  # native APT
    X402_ASSET_SYMBOL: str = "APT"
    X402_ASSET_DECIMALS: int = 8
    X402_SPONSORED: bool = True  # facilitator pays gas

    # Price tiers in the asset's smallest unit
    X402_PRICE_BASIC: str = "100"
    X402_PRICE_PREMIUM: str = "500"
    X402_PRICE_HIGH: str = "1000"

    X402_FACILITATOR_TIMEOUT_SECONDS: float = 5.0
    X402_REQUIRE_TX_REFERENCE: bool = False

    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    # Identity / reputation
    MODULE_ADDRESS: str = "0x0d0b4c628d57f3ffafa1259f1403595c1c07d0e7a0995018fd59e72d1aebfc8c"
    MAGIC_SPELL: str = "0xf2dbdeb981aca16eb5cb33eab7"
    TRUST_MIN_SCORE: int = 10_000_000  # 10.0 in micro-units

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
