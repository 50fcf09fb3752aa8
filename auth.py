import hmac
import time
import base64
import hashlib
import logging
import secrets
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import ValidationError

from config import Config
from models import (
    AccessToken,
    AuthorizationCode,
    ClientRegistration,
    ClientRegistrationRequest,
    TokenResponse,
)
from storage import ClientStore, CodeStore, KeyValueStore, TokenStore

logger = logging.getLogger(__name__)

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
AUTH_CODE_LENGTH = 32
ACCESS_TOKEN_LENGTH = 48
CLIENT_ID_LENGTH = 24


def generate_random_string(length: int, alphabet: str = ALPHABET) -> str:
    """Random string with one CSPRNG byte per character.

    The byte is reduced modulo the alphabet size. 256 is not a multiple of 62,
    so the first 8 characters of the alphabet are very slightly more likely.
    """
    return "".join(alphabet[byte % len(alphabet)] for byte in secrets.token_bytes(length))


def compute_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier)) without padding"""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def verify_pkce(code_verifier: str, code_challenge: str, method: str) -> bool:
    """Verify a PKCE verifier against the stored challenge. Only S256 is accepted."""
    if method != "S256":
        return False
    computed = compute_code_challenge(code_verifier)
    return hmac.compare_digest(computed.encode("utf-8"), code_challenge.encode("utf-8"))


class OAuthError(Exception):
    """OAuth protocol error rendered as {error, error_description}"""

    def __init__(self, error: str, description: str, status_code: int = 400):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error, "error_description": self.description}


class AuthenticationError(Exception):
    """Bearer token rejected by the auth gate"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Credentials:
    """Process-wide login credentials and the static legacy bearer token"""

    def __init__(self, username: Optional[str], password: Optional[str], legacy_token: Optional[str] = None):
        self.username = username
        self.password = password
        self.legacy_token = legacy_token

    @classmethod
    def from_config(cls, config: Config) -> "Credentials":
        return cls(config.auth_username, config.auth_password, config.mcp_auth_token)

    @staticmethod
    def _matches(expected: Optional[str], supplied: Optional[str]) -> bool:
        if not expected or supplied is None:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))

    def check_login(self, username: Optional[str], password: Optional[str]) -> bool:
        # Evaluate both so a wrong username costs the same as a wrong password
        username_ok = self._matches(self.username, username)
        password_ok = self._matches(self.password, password)
        return username_ok and password_ok

    def is_legacy_token(self, token: str) -> bool:
        return self._matches(self.legacy_token, token)


def build_redirect_url(redirect_uri: str, code: str, state: Optional[str] = None) -> str:
    """Append code (and state) to the redirect URI, replacing any existing values"""
    parts = urlsplit(redirect_uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in ("code", "state")]
    query.append(("code", code))
    if state:
        query.append(("state", state))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class AuthManager:
    """OAuth 2.1 authorization server state: registration, codes, tokens and the bearer gate"""

    def __init__(
        self,
        config: Config,
        store: KeyValueStore,
        credentials: Credentials,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.credentials = credentials
        self.codes = CodeStore(store, config.oauth_code_expiry)
        self.tokens = TokenStore(store, config.oauth_token_expiry)
        self.clients = ClientStore(store)
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def register_client(self, client_metadata: Any) -> ClientRegistration:
        """Dynamic Client Registration (RFC 7591)"""
        try:
            request = ClientRegistrationRequest.model_validate(client_metadata)
        except ValidationError as e:
            raise OAuthError("invalid_client_metadata", f"Invalid client metadata: {e.errors()[0]['msg']}") from e

        if not request.redirect_uris:
            raise OAuthError("invalid_client_metadata", "redirect_uris is required")

        client = ClientRegistration(
            client_id=f"client_{generate_random_string(CLIENT_ID_LENGTH)}",
            client_name=request.client_name,
            redirect_uris=request.redirect_uris,
            grant_types=request.grant_types or ["authorization_code"],
            response_types=request.response_types or ["code"],
            token_endpoint_auth_method=request.token_endpoint_auth_method or "none",
            client_id_issued_at=int(self._clock()),
        )
        await self.clients.save(client)

        logger.info(f"Registered client {client.client_id} ({client.client_name or 'unnamed'})")
        return client

    def check_login(self, username: Optional[str], password: Optional[str]) -> bool:
        return self.credentials.check_login(username, password)

    async def create_authorization_code(
        self,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str = "S256",
        scope: str = "mcp:read",
        state: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Issue an authorization code after a successful login; returns (code, redirect_url).

        The redirect URI is not checked against the client's registration.
        """
        auth_code = generate_random_string(AUTH_CODE_LENGTH)
        code_data = AuthorizationCode(
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scope=scope,
            expires_at=self._now_ms() + self.config.oauth_code_expiry * 1000,
        )
        await self.codes.save(auth_code, code_data)

        logger.info(f"Authorization code {auth_code[:8]}... issued for client {client_id}")
        return auth_code, build_redirect_url(redirect_uri, auth_code, state)

    async def exchange_code_for_token(self, form_data: Mapping[str, Any]) -> TokenResponse:
        """Exchange an authorization code for an access token with PKCE verification"""

        grant_type = form_data.get("grant_type")
        code = form_data.get("code")
        code_verifier = form_data.get("code_verifier")
        client_id = form_data.get("client_id")
        redirect_uri = form_data.get("redirect_uri")

        if grant_type != "authorization_code":
            raise OAuthError("unsupported_grant_type", "Only authorization_code is supported")

        if not code or not code_verifier or not isinstance(code, str) or not isinstance(code_verifier, str):
            raise OAuthError("invalid_request", "Missing code or code_verifier")

        # The code is gone after this call whatever the outcome
        code_data = await self.codes.redeem(code)
        if code_data is None:
            logger.warning(f"Token exchange with unknown code {code[:8]}...")
            raise OAuthError("invalid_grant", "Invalid or expired authorization code")

        if code_data.expires_at <= self._now_ms():
            raise OAuthError("invalid_grant", "Invalid or expired authorization code")

        if not verify_pkce(code_verifier, code_data.code_challenge, code_data.code_challenge_method):
            logger.warning(f"PKCE verification failed for client {code_data.client_id}")
            raise OAuthError("invalid_grant", "PKCE verification failed")

        if client_id and client_id != code_data.client_id:
            raise OAuthError("invalid_grant", "Client ID mismatch")

        if redirect_uri and redirect_uri != code_data.redirect_uri:
            raise OAuthError("invalid_grant", "Redirect URI mismatch")

        token = AccessToken(
            access_token=generate_random_string(ACCESS_TOKEN_LENGTH),
            client_id=code_data.client_id,
            scope=code_data.scope,
            expires_at=self._now_ms() + self.config.oauth_token_expiry * 1000,
        )
        await self.tokens.save(token)

        logger.info(f"Access token issued for client {code_data.client_id}")
        return TokenResponse(
            access_token=token.access_token,
            expires_in=self.config.oauth_token_expiry,
            scope=token.scope,
        )

    async def validate_bearer(self, auth_header: Optional[str]) -> Optional[AccessToken]:
        """Validate an Authorization header.

        Returns the token record for OAuth tokens and None for the legacy
        static token. Raises AuthenticationError otherwise.
        """
        if not auth_header:
            raise AuthenticationError("Authorization header required")

        if not auth_header.startswith("Bearer "):
            raise AuthenticationError("Invalid authorization format. Use: Bearer <token>")

        token = auth_header[len("Bearer "):]

        if self.credentials.is_legacy_token(token):
            return None

        token_data = await self.tokens.get(token)
        if token_data is None:
            raise AuthenticationError("Invalid token")

        if token_data.expires_at > self._now_ms():
            return token_data

        await self.tokens.delete(token)
        logger.info(f"Expired access token {token[:8]}... removed")
        raise AuthenticationError("Token expired")
