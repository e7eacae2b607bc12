#!/usr/bin/env python3
"""
Validate environment configuration before deployment.
Checks required variables, database and Redis connectivity, and the
downstream webhooks the ledger calls.
Exit code 0 = OK, 1 = problems detected.
"""
import os
import sys
import logging
from typing import List
from urllib.parse import urlparse

import httpx
import redis
from sqlalchemy import create_engine, text

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

WEAK_SECRETS = {"change-me", "changeme", "secret", "your-secret-key"}


class EnvironmentValidator:
    """Validates environment configuration for production deployment."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.info: List[str] = []

    def validate_all(self) -> bool:
        logger.info("Starting environment validation...")

        self.validate_required_variables()
        self.validate_optional_variables()
        self.validate_secrets()
        self.validate_database_connection()
        self.validate_redis_connection()
        self.validate_downstream_urls()

        self.print_results()
        return len(self.errors) == 0

    def validate_required_variables(self):
        required_vars = [
            ("DATABASE_URL", "Database connection string"),
            ("JWT_SECRET", "JWT signing secret"),
            ("THRIVECART_SECRET", "Shared secret ThriveCart sends with every webhook"),
        ]
        for var, description in required_vars:
            if not os.getenv(var):
                self.errors.append(f"Missing required variable {var}: {description}")

    def validate_optional_variables(self):
        optional_vars = [
            ("REDIS_URL", "Readiness checks will report Redis as degraded"),
            ("N8N_CHAT_WEBHOOK_URL", "Chat will answer with the echo provider"),
            ("N8N_IMAGE_WEBHOOK_URL", "Image generation will fail with a configuration error"),
            ("VDOCIPHER_API_KEY", "Video playback tokens cannot be issued"),
            ("ADMIN_EMAILS", "Nobody can reach the admin endpoints"),
        ]
        for var, consequence in optional_vars:
            if not os.getenv(var):
                self.warnings.append(f"Optional variable {var} not set: {consequence}")

    def validate_secrets(self):
        jwt_secret = os.getenv("JWT_SECRET", "")
        if jwt_secret:
            if jwt_secret.lower() in WEAK_SECRETS:
                self.errors.append("JWT_SECRET appears to be a default/example value")
            elif len(jwt_secret) < 32:
                self.errors.append("JWT_SECRET must be at least 32 characters")
        jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        if jwt_algorithm not in ("HS256", "HS384", "HS512"):
            self.warnings.append(f"JWT_ALGORITHM '{jwt_algorithm}' may not be supported")
        thrivecart_secret = os.getenv("THRIVECART_SECRET", "")
        if thrivecart_secret and len(thrivecart_secret) < 12:
            self.warnings.append("THRIVECART_SECRET seems too short (< 12 characters)")
        if os.getenv("DEBUG", "false").lower() in ("1", "true", "yes"):
            self.warnings.append("DEBUG is enabled; disable in production")

    def validate_database_connection(self):
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            return
        parsed = urlparse(database_url)
        if parsed.scheme.split('+')[0] not in ("postgresql", "postgres"):
            self.warnings.append(f"Database scheme '{parsed.scheme}' - expected postgresql")
        try:
            engine = create_engine(database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.info.append(f"Database connection successful ({parsed.scheme})")
        except Exception as e:
            self.errors.append(f"Database connection failed: {e}")

    def validate_redis_connection(self):
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            return
        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            self.info.append(f"Redis connection successful: v{client.info().get('redis_version', 'unknown')}")
        except Exception as e:
            self.warnings.append(f"Redis connection failed: {e}")

    def validate_downstream_urls(self):
        for var in ("N8N_CHAT_WEBHOOK_URL", "N8N_IMAGE_WEBHOOK_URL", "VDOCIPHER_API_URL"):
            url = os.getenv(var)
            if not url:
                continue
            if not url.startswith("https://"):
                self.warnings.append(f"{var} should use HTTPS in production")
            try:
                # Any HTTP answer means the host is reachable
                httpx.head(url, timeout=10)
                self.info.append(f"{var} host reachable")
            except httpx.HTTPError as e:
                self.warnings.append(f"{var} unreachable: {e}")

    def print_results(self):
        print("\n===== Environment Validation Report =====\n")
        for title, messages in (("Info", self.info), ("Warnings", self.warnings), ("Errors", self.errors)):
            if messages:
                print(f"{title}:")
                for msg in messages:
                    print(f"  - {msg}")
                print("")
        print(f"Overall: {'PASS' if not self.errors else 'FAIL'}")
        print("")


def main() -> int:
    validator = EnvironmentValidator()
    return 0 if validator.validate_all() else 1


if __name__ == "__main__":
    sys.exit(main())
