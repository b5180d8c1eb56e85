"""
Configuration management for the Brokerage Graph core.

Loads BROKERAGE_* settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # Matching
    MATCH_THRESHOLD: int = int(os.getenv('BROKERAGE_MATCH_THRESHOLD', '70'))
    HIGH_PRIORITY_SCORE: int = int(os.getenv('BROKERAGE_HIGH_PRIORITY_SCORE', '90'))

    # Deals
    DEAL_NUMBER_PREFIX: str = os.getenv('BROKERAGE_DEAL_NUMBER_PREFIX', 'DEAL')
    EXPECTED_CLOSING_DAYS: int = int(os.getenv('BROKERAGE_EXPECTED_CLOSING_DAYS', '60'))
    PRIMARY_COMMISSION_SHARE: float = float(
        os.getenv('BROKERAGE_PRIMARY_COMMISSION_SHARE', '60')
    )

    # Storage (JsonFileEntityStore directory; empty means in-memory)
    STORE_PATH: str = os.getenv('BROKERAGE_STORE_PATH', '')

    # Logging
    LOG_LEVEL: str = os.getenv('BROKERAGE_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate configuration values.

        Returns:
            List of problems, one per invalid setting. Empty when valid.
        """
        problems = []
        if not 0 <= cls.MATCH_THRESHOLD <= 100:
            problems.append('BROKERAGE_MATCH_THRESHOLD must be within 0-100')
        if not 0 <= cls.HIGH_PRIORITY_SCORE <= 100:
            problems.append('BROKERAGE_HIGH_PRIORITY_SCORE must be within 0-100')
        if not 0 <= cls.PRIMARY_COMMISSION_SHARE <= 100:
            problems.append('BROKERAGE_PRIMARY_COMMISSION_SHARE must be within 0-100')
        if cls.EXPECTED_CLOSING_DAYS < 0:
            problems.append('BROKERAGE_EXPECTED_CLOSING_DAYS must not be negative')
        if not cls.DEAL_NUMBER_PREFIX:
            problems.append('BROKERAGE_DEAL_NUMBER_PREFIX must not be empty')
        return problems


# Singleton config instance
config = Config()
