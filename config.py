import os
import logging
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

class Config:
    """Configuration management for the MCP gateway"""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        env = os.environ if env is None else env

        # Server configuration
        self.host = env.get("HOST", "0.0.0.0")
        self.port = int(env.get("PORT", 8000))
        self.environment = env.get("ENVIRONMENT", "production")
        self.allowed_origins = self._parse_allowed_origins(env.get("ALLOWED_ORIGINS", "*"))

        # Content API configuration
        self.content_api_url = env.get("JCG_GAMJA_API_URL") or "https://jeongcheogi.edugamja.com"
        self.content_api_key = env.get("MCP_API_KEY")
        timeout = env.get("CONTENT_API_TIMEOUT")
        self.content_api_timeout = float(timeout) if timeout else None

        # Login and legacy bearer credentials
        self.mcp_auth_token = env.get("MCP_AUTH_TOKEN")
        self.auth_username = env.get("AUTH_USERNAME")
        self.auth_password = env.get("AUTH_PASSWORD")

        # OAuth configuration
        self.oauth_code_expiry = int(env.get("OAUTH_CODE_EXPIRY", 600))  # 10 minutes
        self.oauth_token_expiry = int(env.get("OAUTH_TOKEN_EXPIRY", 3600))  # 1 hour
        self.oauth_scopes = ["mcp:read", "mcp:write"]
        self.oauth_default_scope = "mcp:read"

        # Storage configuration
        self.redis_url = env.get("REDIS_URL")  # Optional Redis for production

        # MCP configuration
        self.mcp_protocol_version = env.get("MCP_PROTOCOL_VERSION", "2024-11-05")
        self.mcp_server_name = env.get("MCP_SERVER_NAME", "gamja-mcp-server")
        self.mcp_server_version = env.get("MCP_SERVER_VERSION", "1.0.0")

        # Logging configuration
        self.log_level = env.get("LOG_LEVEL", "INFO")
        self.log_format = env.get("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        self._validate_config()

    def _parse_allowed_origins(self, origins_str: str) -> List[str]:
        """Parse allowed origins from environment variable"""
        if origins_str == "*":
            return ["*"]
        return [origin.strip() for origin in origins_str.split(",") if origin.strip()]

    def _validate_config(self):
        """Validate configuration values"""
        if self.oauth_code_expiry < 30 or self.oauth_code_expiry > 600:
            raise ValueError("OAUTH_CODE_EXPIRY must be between 30 and 600 seconds")

        if self.oauth_token_expiry < 300:  # 5 minutes minimum
            raise ValueError("OAUTH_TOKEN_EXPIRY must be at least 300 seconds")

        if self.content_api_timeout is not None and self.content_api_timeout <= 0:
            raise ValueError("CONTENT_API_TIMEOUT must be a positive number of seconds")

        if self.is_production:
            if not self.content_api_key:
                logger.warning("MCP_API_KEY not set - content tools will return errors")

            if not (self.auth_username and self.auth_password):
                logger.warning("AUTH_USERNAME/AUTH_PASSWORD not set - OAuth login will always fail")

            if not self.redis_url:
                logger.warning("REDIS_URL not set - codes and tokens are kept in process memory")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.environment == "production"
