"""
Configuration settings for the ZeroSync rollup sequencer.

This module provides the configuration management for the sequencer, the proof
engines, the persistent ledger, the anchoring adapter and the HTTP API. Values are
read from the environment so the same code runs unchanged in development,
production and tests.
"""

import os
from typing import Any


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Framework configuration settings"""

    FRAMEWORK_NAME = "zerosync"

    # Batching settings
    BATCH_SIZE = int(os.getenv("BATCH_SIZE", "8"))  # Transactions per batch
    BATCH_TIMEOUT = int(os.getenv("BATCH_TIMEOUT", "10000"))  # milliseconds, 0 disables the timer
    TXPOOL_QUERY_LIMIT = 100

    # Ledger settings
    DB_PATH = os.getenv("DB_PATH", "./data/rollup.db")
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")
    SQL_ECHO = _env_bool("SQL_ECHO", False)
    GENESIS_STATE_ROOT = os.getenv("GENESIS_STATE_ROOT", "0x" + "0" * 64)

    # Proof settings
    PROOF_MODE = os.getenv("PROOF_MODE", "mock")  # mock, real
    CIRCUIT_DIR = os.getenv("CIRCUIT_DIR", "./circuits/build")
    SNARKJS_BIN = os.getenv("SNARKJS_BIN", "snarkjs")
    PROOF_TIMEOUT = float(os.getenv("PROOF_TIMEOUT", "120"))  # seconds

    # Anchoring settings (external L1)
    ANCHOR_ENABLED = _env_bool("ANCHOR_ENABLED", False)
    ANCHOR_BACKEND = os.getenv("ANCHOR_BACKEND", "main_chain")  # main_chain, http
    ANCHOR_URL = os.getenv("ANCHOR_URL", "")
    ANCHOR_TIMEOUT = float(os.getenv("ANCHOR_TIMEOUT", "10"))

    # API settings
    API_VERSION = "v1"
    API_HOST = os.getenv("API_HOST", "localhost")
    API_PORT = int(os.getenv("PORT", "3000"))
    CORS_ORIGINS = [o for o in os.getenv("CORS_ORIGINS", "*").split(",") if o]

    # Logging settings
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def get_sequencer_config(cls) -> dict[str, Any]:
        """Get sequencer configuration"""
        return {
            "batch_size": cls.BATCH_SIZE,
            "batch_timeout": cls.BATCH_TIMEOUT,
            "database_url": cls.DATABASE_URL,
            "proof_mode": cls.PROOF_MODE,
            "circuit_dir": cls.CIRCUIT_DIR,
            "snarkjs_bin": cls.SNARKJS_BIN,
            "proof_timeout": cls.PROOF_TIMEOUT,
            "genesis_state_root": cls.GENESIS_STATE_ROOT,
            "anchor_enabled": cls.ANCHOR_ENABLED,
        }

    @classmethod
    def get_anchor_config(cls) -> dict[str, Any]:
        """Get anchoring configuration"""
        return {
            "enabled": cls.ANCHOR_ENABLED,
            "backend": cls.ANCHOR_BACKEND,
            "url": cls.ANCHOR_URL,
            "timeout": cls.ANCHOR_TIMEOUT,
        }

    @classmethod
    def get_api_config(cls) -> dict[str, Any]:
        """Get API configuration"""
        return {
            "version": cls.API_VERSION,
            "host": cls.API_HOST,
            "port": cls.API_PORT,
            "cors_origins": cls.CORS_ORIGINS,
        }

    @classmethod
    def validate_config(cls) -> list[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if cls.BATCH_SIZE <= 0:
            errors.append("BATCH_SIZE must be positive")

        if cls.BATCH_TIMEOUT < 0:
            errors.append("BATCH_TIMEOUT must be zero or positive")

        if cls.PROOF_MODE not in ["mock", "real"]:
            errors.append("PROOF_MODE must be one of: mock, real")

        if cls.PROOF_TIMEOUT <= 0:
            errors.append("PROOF_TIMEOUT must be positive")

        if cls.ANCHOR_BACKEND not in ["main_chain", "http"]:
            errors.append("ANCHOR_BACKEND must be one of: main_chain, http")

        if cls.ANCHOR_ENABLED and cls.ANCHOR_BACKEND == "http" and not cls.ANCHOR_URL:
            errors.append("ANCHOR_URL is required when the http anchor backend is enabled")

        if cls.API_PORT <= 0 or cls.API_PORT > 65535:
            errors.append("API_PORT must be between 1 and 65535")

        return errors


# Environment-specific settings
class DevelopmentSettings(Settings):
    """Development environment settings"""
    LOG_LEVEL = "DEBUG"
    API_HOST = "localhost"


class ProductionSettings(Settings):
    """Production environment settings"""
    LOG_LEVEL = "WARNING"
    API_HOST = "0.0.0.0"
    PROOF_MODE = os.getenv("PROOF_MODE", "real")


class TestingSettings(Settings):
    """Testing environment settings"""
    LOG_LEVEL = "DEBUG"
    BATCH_SIZE = 3
    BATCH_TIMEOUT = 200
    DATABASE_URL = "sqlite://"
    PROOF_MODE = "mock"


def get_settings() -> Settings:
    """Get settings based on environment variable"""
    env = os.getenv("ZEROSYNC_ENV", "development").lower()

    if env == "production":
        return ProductionSettings()
    elif env == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


# Global settings instance
settings = get_settings()
