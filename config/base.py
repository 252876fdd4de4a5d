# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_connector_list(value):
    """
    Parse a comma-separated connector list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized connector kinds.
    """
    if not value:
        return ()

    seen = set()
    connectors = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        connectors.append(item)
    return tuple(connectors)


def _parse_positive_number(value, default, *, cast=int, minimum=1):
    """Parse a numeric environment value, falling back to ``default`` when invalid or below ``minimum``."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


class Config:
    # SECRET_KEY must be set via environment variable in production
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Sync engine configuration
    SYNC_ENABLED = _coerce_bool(os.environ.get("SYNC_ENABLED"), default=False)
    SYNC_CONNECTORS = _parse_connector_list(os.environ.get("SYNC_CONNECTORS", ""))
    SYNC_BATCH_SIZE = _parse_positive_number(os.environ.get("SYNC_BATCH_SIZE"), 50)
    SYNC_LINEAGE_ENABLED = _coerce_bool(os.environ.get("SYNC_LINEAGE_ENABLED"), default=True)
    SYNC_METRICS_ENABLED = _coerce_bool(os.environ.get("SYNC_METRICS_ENABLED"), default=True)
    SYNC_HTTP_TIMEOUT = _parse_positive_number(os.environ.get("SYNC_HTTP_TIMEOUT"), 30.0, cast=float)
    SYNC_CACHE_FRESH_SECONDS = _parse_positive_number(os.environ.get("SYNC_CACHE_FRESH_SECONDS"), 600, minimum=0)
    SYNC_CACHE_STALE_SECONDS = _parse_positive_number(os.environ.get("SYNC_CACHE_STALE_SECONDS"), 1200, minimum=0)
    if SYNC_CACHE_STALE_SECONDS < SYNC_CACHE_FRESH_SECONDS:
        raise ValueError("SYNC_CACHE_STALE_SECONDS must be greater than or equal to SYNC_CACHE_FRESH_SECONDS.")
    SYNC_ENTITY_FIELDS_PATH = os.environ.get("SYNC_ENTITY_FIELDS_PATH")

    # Background worker
    SYNC_WORKER_ENABLED = _coerce_bool(os.environ.get("SYNC_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    # Project root is the parent of the config directory
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes on Windows
    db_path = os.path.join(instance_path, "tributary_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = False
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    SYNC_ENABLED = True
    SYNC_CONNECTORS = ()
    SYNC_WORKER_ENABLED = False
    SYNC_METRICS_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
