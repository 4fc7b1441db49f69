import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from storefront.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "your-secret-key-change-in-production"

REQUIRED_VARS = ("DATABASE_URL", "JWT_SECRET_KEY")
OPTIONAL_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "FACEBOOK_APP_ID",
    "FACEBOOK_APP_SECRET",
)


@dataclass
class DatabaseConfig:
    """Database connection and pool settings"""
    url: str
    pool_size: int = 10
    max_overflow: int = 0
    pool_timeout: int = 30
    server_selection_timeout: int = 5  # seconds to reach a server
    socket_timeout: int = 45  # idle seconds before keepalive probes
    ip_family: int = 4  # 4, 6 or 0 for "let the resolver decide"
    write_concern: str = "majority"
    echo: bool = False  # Log SQL queries


@dataclass
class ReconnectConfig:
    """Reconnect policy applied after the initial connection succeeded"""
    delay_seconds: float = 5.0
    backoff_factor: float = 2.0
    max_delay_seconds: float = 60.0
    jitter_seconds: float = 0.0
    max_attempts: Optional[int] = 10


@dataclass
class SecurityConfig:
    """Security-related configuration"""
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 120


@dataclass
class OAuthConfig:
    """Social login credentials. Exposed only; no client flow is wired."""
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    facebook_app_id: Optional[str] = None
    facebook_app_secret: Optional[str] = None


@dataclass
class AppConfig:
    """Application configuration"""
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 5000
    environment: str = "development"  # development, staging, production, testing
    log_level: str = "INFO"
    tax_rate: float = 0.18


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _as_optional_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    if value is None or value.strip() == "":
        return default
    if value.strip().lower() in ("none", "unlimited"):
        return None
    return int(value)


@dataclass
class Config:
    database: DatabaseConfig
    reconnect: ReconnectConfig
    security: SecurityConfig
    oauth: OAuthConfig
    app: AppConfig
    environ: Mapping[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        environment = env.get("ENVIRONMENT") or env.get("NODE_ENV") or "development"

        database = DatabaseConfig(
            url=env.get("DATABASE_URL", ""),
            pool_size=int(env.get("DB_POOL_SIZE", "10")),
            max_overflow=int(env.get("DB_MAX_OVERFLOW", "0")),
            pool_timeout=int(env.get("DB_POOL_TIMEOUT", "30")),
            server_selection_timeout=int(env.get("DB_SERVER_SELECTION_TIMEOUT", "5")),
            socket_timeout=int(env.get("DB_SOCKET_TIMEOUT", "45")),
            ip_family=int(env.get("DB_IP_FAMILY", "4")),
            write_concern=env.get("DB_WRITE_CONCERN", "majority"),
            echo=_as_bool(env.get("DB_ECHO")),
        )

        reconnect = ReconnectConfig(
            delay_seconds=float(env.get("DB_RECONNECT_DELAY", "5")),
            backoff_factor=float(env.get("DB_RECONNECT_BACKOFF", "2")),
            max_delay_seconds=float(env.get("DB_RECONNECT_MAX_DELAY", "60")),
            jitter_seconds=float(env.get("DB_RECONNECT_JITTER", "0")),
            max_attempts=_as_optional_int(env.get("DB_RECONNECT_MAX_ATTEMPTS"), 10),
        )

        security = SecurityConfig(
            jwt_secret_key=env.get("JWT_SECRET_KEY", DEV_JWT_SECRET),
            jwt_algorithm=env.get("JWT_ALGORITHM", "HS256"),
            jwt_expiration_hours=int(env.get("JWT_EXPIRATION_HOURS", "120")),
        )

        oauth = OAuthConfig(
            google_client_id=env.get("GOOGLE_CLIENT_ID"),
            google_client_secret=env.get("GOOGLE_CLIENT_SECRET"),
            facebook_app_id=env.get("FACEBOOK_APP_ID"),
            facebook_app_secret=env.get("FACEBOOK_APP_SECRET"),
        )

        app = AppConfig(
            debug=_as_bool(env.get("DEBUG")),
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", "5000")),
            environment=environment,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            tax_rate=float(env.get("TAX_RATE", "0.18")),
        )

        return cls(
            database=database,
            reconnect=reconnect,
            security=security,
            oauth=oauth,
            app=app,
            environ=dict(env),
        )

    @property
    def is_development(self) -> bool:
        return self.app.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.app.environment == "production"

    def missing_required(self) -> List[str]:
        return [name for name in REQUIRED_VARS if not self.environ.get(name)]

    def missing_optional(self) -> List[str]:
        return [name for name in OPTIONAL_VARS if not self.environ.get(name)]

    def warn_missing(self) -> List[str]:
        """Log a warning per unset variable and return the names."""
        missing = self.missing_required()
        for name in missing:
            logger.warning(f"Missing required environment variable: {name}")
        optional = self.missing_optional()
        for name in optional:
            logger.warning(f"Environment variable {name} is not set; related features are disabled")
        return missing + optional

    def validate(self) -> None:
        """Validate critical configuration"""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing=missing,
            )
        if self.is_production and self.security.jwt_secret_key == DEV_JWT_SECRET:
            raise ConfigurationError("JWT_SECRET_KEY must be set in production")


def load_config(environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Config:
    """Build a Config from the process environment, reading .env first."""
    if environ is None and dotenv:
        load_dotenv()
    return Config.from_env(environ)
