# config/validation.py

"""
Environment variable validation for Tributary.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

from .base import _coerce_bool, _parse_connector_list

# Environment variables each connector reads at call time.
CONNECTOR_ENV_REQUIREMENTS = {
    "slack": ("SLACK_BOT_TOKEN",),
    "google_workspace": ("GOOGLE_WORKSPACE_ADMIN_TOKEN", "GOOGLE_WORKSPACE_DOMAIN"),
    "suptask": ("SUPTASK_API_BASE_URL", "SUPTASK_API_TOKEN"),
}


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if _coerce_bool(os.environ.get("SYNC_ENABLED"), default=False):
        # An empty connector list enables every built-in connector.
        connectors = _parse_connector_list(os.environ.get("SYNC_CONNECTORS", "")) or tuple(CONNECTOR_ENV_REQUIREMENTS)
        for connector in connectors:
            for variable in CONNECTOR_ENV_REQUIREMENTS.get(connector, ()):
                if not os.environ.get(variable):
                    errors.append(f"{variable} is required when the '{connector}' connector is enabled")

    if _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False):
        if not (os.environ.get("CELERY_BROKER_URL") or os.environ.get("CELERY_SQLITE_PATH")):
            errors.append("CELERY_BROKER_URL or CELERY_SQLITE_PATH is required when SYNC_WORKER_ENABLED=true")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
