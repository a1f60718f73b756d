"""
Configuration settings for the lending protocol.
"""

from typing import Dict, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import RATE_SCALE
from .utils import normalize_address


class ProtocolSettings(BaseSettings):
    """Lending protocol configuration"""

    # EIP-712 domain
    domain_name: str = "Kettle"
    domain_version: str = "2"
    chain_id: int = Field(1, gt=0)
    verifying_contract: str = "0x000000000000000000000000000000000000ce77"

    # Economic bounds
    max_rate: int = Field(10 * RATE_SCALE, gt=0)  # 1000% APR

    model_config = SettingsConfigDict(env_prefix="KETTLE_", case_sensitive=False)

    @field_validator("verifying_contract")
    @classmethod
    def checksum_verifying_contract(cls, value: str) -> str:
        return normalize_address(value)

    def domain(self) -> Dict[str, Any]:
        """EIP-712 domain for every signed payload"""
        return {
            "name": self.domain_name,
            "version": self.domain_version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


# Global settings instance
settings = ProtocolSettings()
