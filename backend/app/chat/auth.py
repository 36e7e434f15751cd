"""Bearer credential verification for live connections and HTTP requests.

Tokens are HS256 JWTs issued by the (external) login service. The identity
is read from the ``userId`` claim, falling back to the legacy ``id`` claim.
"""
import logging
from typing import Any, Dict, Mapping, Optional

import jwt
from jwt import InvalidTokenError

from app.config import AppConfig

from .errors import AuthError
from .rooms import ROOM_SEPARATOR, is_valid_identity

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def bearer_from_header(value: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not value:
        return None
    if value[:len(BEARER_PREFIX)].lower() != BEARER_PREFIX:
        return None
    token = value[len(BEARER_PREFIX):].strip()
    return token or None


def credential_from_handshake(
    headers: Mapping[str, str], query_params: Mapping[str, str]
) -> Optional[str]:
    """Find the bearer credential in a WebSocket handshake.

    Checked in order: ``Authorization`` header, ``token`` query parameter,
    and a ``Sec-WebSocket-Protocol`` offer of the form ``bearer, <token>``
    (browsers cannot set headers on WebSocket requests).
    """
    token = bearer_from_header(headers.get("authorization"))
    if token:
        return token
    token = query_params.get("token")
    if token:
        return token
    protocols = [p.strip() for p in headers.get("sec-websocket-protocol", "").split(",")]
    if len(protocols) == 2 and protocols[0].lower() == "bearer" and protocols[1]:
        return protocols[1]
    return None


class TokenAuthenticator:
    """Verifies signature and expiry of bearer tokens and yields an identity."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        leeway_seconds: int = 10,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._leeway = leeway_seconds
        self._audience = audience
        self._issuer = issuer

    @classmethod
    def from_config(cls, config: AppConfig) -> "TokenAuthenticator":
        return cls(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.auth.algorithm,
            leeway_seconds=config.auth.leeway_seconds,
            audience=config.auth.audience,
            issuer=config.auth.issuer,
        )

    def authenticate(self, token: Optional[str]) -> str:
        """Return the identity named by ``token``.

        Raises:
            AuthError: If the token is missing, malformed, badly signed,
                expired, or carries no usable identity claim.
        """
        if not token:
            raise AuthError("Authentication error: No token provided")

        decode_kwargs: Dict[str, Any] = {
            "algorithms": [self._algorithm],
            "leeway": self._leeway,
        }
        if self._audience:
            decode_kwargs["audience"] = self._audience
        if self._issuer:
            decode_kwargs["issuer"] = self._issuer

        try:
            claims = jwt.decode(token, self._secret_key, **decode_kwargs)
        except InvalidTokenError as e:
            logger.warning(f"[Auth] Token rejected: {e}")
            raise AuthError("Authentication error: Invalid token") from e

        identity = claims.get("userId") or claims.get("id")
        if not identity:
            raise AuthError("Authentication error: Token has no user id")
        if not is_valid_identity(str(identity)):
            raise AuthError(f"Authentication error: User id may not contain '{ROOM_SEPARATOR}'")
        return str(identity)

    def issue(self, identity: str, **claims: Any) -> str:
        """Sign a token for ``identity`` (used by tooling and tests)."""
        payload = {"userId": identity, **claims}
        if self._audience and "aud" not in payload:
            payload["aud"] = self._audience
        if self._issuer and "iss" not in payload:
            payload["iss"] = self._issuer
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
