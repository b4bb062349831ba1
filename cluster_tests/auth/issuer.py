"""
Test-identity issuer.

Mints PS512-signed JWTs that the cluster manager accepts as if they came
from the platform Keycloak realm, and publishes the matching public key as
a JWKS and an OIDC discovery document (see ``oidc_mock``).
"""

import base64
import json
import threading
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cluster_tests.auth.exceptions import (
    SignError,
    TokenErrorReason,
    TokenValidationError,
)
from cluster_tests.auth.keys import (
    EphemeralKeyProvider,
    KeyProvider,
    default_key_provider,
    private_key_to_pem,
)
from cluster_tests.auth.models import TestAuthContext, TokenClaims
from cluster_tests.config import DEFAULT_NAMESPACE
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("issuer")

KEY_ID = "cluster-tests-key"
ISSUER_URL = "http://platform-keycloak.orch-platform.svc/realms/master"
SIGNING_ALGORITHM = "PS512"
ACCEPTED_ALGORITHMS = ["PS256", "PS384", "PS512"]
DEFAULT_TTL = timedelta(hours=1)
DEFAULT_AUDIENCE = ["cluster-manager"]
DEFAULT_SCOPE = "openid email roles profile"
DEFAULT_AZP = "system-client"

# Keycloak realm role prefix for the project manager group
_MANAGER_GROUP_ID = "63764aaf-1527-46a0-b921-c5f32dba1ddb"

TTL = Union[timedelta, int, float]


def _ttl_seconds(ttl: TTL) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


def _b64url_uint(value: int) -> str:
    """Base64url (no padding) of the minimal big-endian bytes of value."""
    raw = value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def realm_roles(namespace: str = DEFAULT_NAMESPACE) -> List[str]:
    """Realm roles granting full cluster-manager access to one project."""
    return [
        "account/view-profile",
        f"{namespace}_cl-tpl-r",
        f"{namespace}_cl-tpl-rw",
        "default-roles-master",
        f"{namespace}_im-r",
        f"{namespace}_reg-r",
        f"{namespace}_cat-r",
        f"{namespace}_alrt-r",
        f"{namespace}_tc-r",
        f"{namespace}_ao-rw",
        "offline_access",
        "uma_authorization",
        f"{namespace}_cl-r",
        f"{namespace}_cl-rw",
        "account/manage-account",
        f"{_MANAGER_GROUP_ID}_{namespace}_m",
    ]


class TestIdentity:
    """
    Issues and validates test tokens with one RSA signing key.

    Tokens carry ``kid`` in the header and are signed with RSASSA-PSS
    (PS512), so two tokens with identical claims have different signatures.
    """

    __test__ = False

    _shared: Optional["TestIdentity"] = None
    _shared_lock = threading.Lock()

    def __init__(
        self,
        key_provider: Optional[KeyProvider] = None,
        issuer_url: str = ISSUER_URL,
        key_id: str = KEY_ID,
    ):
        """Initialize the identity.

        Args:
            key_provider: Source of the signing key (default: the shared
                file-backed provider)
            issuer_url: Value of the ``iss`` claim and discovery issuer
            key_id: Value of the ``kid`` header and JWKS entry
        """
        self.key_provider = key_provider or default_key_provider()
        self.issuer_url = issuer_url.rstrip("/")
        self.key_id = key_id

    @classmethod
    def new(cls, **kwargs) -> "TestIdentity":
        """Identity with a fresh in-memory keypair."""
        identity = cls(key_provider=EphemeralKeyProvider(), **kwargs)
        # generate now so key errors surface at construction
        identity.private_key
        return identity

    @classmethod
    def shared(cls) -> "TestIdentity":
        """Identity backed by the key file shared across test processes."""
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls()
            return cls._shared

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        return self.key_provider.get_or_create()

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    def _sign(self, claims: Dict[str, Any]) -> str:
        try:
            return jwt.encode(
                claims,
                self.private_key,
                algorithm=SIGNING_ALGORITHM,
                headers={"kid": self.key_id},
            )
        except (TypeError, ValueError, jwt.PyJWTError) as e:
            raise SignError(f"Failed to sign token: {e}") from e

    def _base_claims(
        self, subject: str, audience: Union[str, Sequence[str]], ttl: TTL
    ) -> Dict[str, Any]:
        # A bare string is a single audience
        if isinstance(audience, str):
            audience = [audience]
        now = time.time()
        return {
            "sub": subject,
            "iss": self.issuer_url,
            "aud": list(audience),
            "iat": int(now),
            "nbf": int(now),
            "exp": int(now + _ttl_seconds(ttl)),
            "typ": "Bearer",
        }

    def issue(
        self,
        subject: str,
        audience: Optional[Union[str, Sequence[str]]] = None,
        claims: Optional[Dict[str, Any]] = None,
        ttl: TTL = DEFAULT_TTL,
    ) -> str:
        """
        Issue a signed token.

        Args:
            subject: ``sub`` claim
            audience: ``aud`` claim, one name or a list (default: cluster-manager)
            claims: Extra claims, applied last so they may override defaults
            ttl: Lifetime as a timedelta or seconds

        Returns:
            Compact JWS string

        Raises:
            SignError: If the claims cannot be serialized or signed
        """
        payload = self._base_claims(
            subject, DEFAULT_AUDIENCE if audience is None else audience, ttl
        )
        if claims:
            payload.update(claims)
        logger.debug(f"Issuing token for subject={subject} aud={payload['aud']}")
        return self._sign(payload)

    def issue_short_lived(self, subject: str, ttl: TTL) -> str:
        """Token for the cluster-manager audience with a custom lifetime."""
        return self.issue(subject, DEFAULT_AUDIENCE, ttl=ttl)

    def _keycloak_claims(
        self, subject: str, namespace: str, azp: str
    ) -> Dict[str, Any]:
        return {
            "scope": DEFAULT_SCOPE,
            "azp": azp,
            "realm_access": {"roles": realm_roles(namespace)},
            "resource_access": {"cluster-manager": {"roles": ["admin", "manager"]}},
            "preferred_username": subject,
        }

    def issue_cluster_manager_token(
        self,
        subject: str,
        project_id: Optional[str] = None,
        ttl: TTL = DEFAULT_TTL,
    ) -> str:
        """Token shaped like a Keycloak access token with project roles."""
        claims = self._keycloak_claims(
            subject, project_id or DEFAULT_NAMESPACE, DEFAULT_AZP
        )
        return self.issue(subject, DEFAULT_AUDIENCE, claims=claims, ttl=ttl)

    def issue_for_client(
        self,
        subject: str,
        audience: Sequence[str],
        azp: str,
        project_id: Optional[str] = None,
    ) -> str:
        """Keycloak-shaped token for a specific client (audience and azp)."""
        if not audience:
            raise SignError("Audience must not be empty")
        claims = self._keycloak_claims(subject, project_id or DEFAULT_NAMESPACE, azp)
        return self.issue(subject, audience, claims=claims)

    def validate(self, token: str, audience: Optional[str] = None) -> Dict[str, Any]:
        """
        Verify a token signed by this identity and return its claims.

        Args:
            token: Compact JWS string
            audience: Required audience; not checked when None

        Raises:
            TokenValidationError: With the reason the token was rejected
        """
        try:
            return jwt.decode(
                token,
                self.public_key,
                algorithms=ACCEPTED_ALGORITHMS,
                audience=audience,
                options={"verify_aud": audience is not None},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenValidationError(TokenErrorReason.EXPIRED, str(e)) from e
        except jwt.InvalidSignatureError as e:
            raise TokenValidationError(TokenErrorReason.SIGNATURE, str(e)) from e
        except jwt.InvalidAlgorithmError as e:
            raise TokenValidationError(TokenErrorReason.ALGORITHM, str(e)) from e
        except jwt.InvalidAudienceError as e:
            raise TokenValidationError(TokenErrorReason.AUDIENCE, str(e)) from e
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise TokenValidationError(TokenErrorReason.MALFORMED, str(e)) from e

    def claims(self, token: str, audience: Optional[str] = None) -> TokenClaims:
        """Validate a token and return its registered claims as a model."""
        return TokenClaims.from_claims(self.validate(token, audience))

    def public_key_pem(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def private_key_pem(self) -> bytes:
        return private_key_to_pem(self.private_key)

    def jwks(self) -> Dict[str, List[Dict[str, str]]]:
        """Public key set with the single signing key."""
        numbers = self.public_key.public_numbers()
        return {
            "keys": [
                {
                    "kty": "RSA",
                    "use": "sig",
                    "kid": self.key_id,
                    "alg": SIGNING_ALGORITHM,
                    "n": _b64url_uint(numbers.n),
                    "e": _b64url_uint(numbers.e),
                }
            ]
        }

    def jwks_json(self) -> str:
        return json.dumps(self.jwks())

    def discovery_document(self) -> Dict[str, Any]:
        """OIDC discovery document pointing at this identity's JWKS."""
        issuer = self.issuer_url
        return {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/protocol/openid-connect/auth",
            "token_endpoint": f"{issuer}/protocol/openid-connect/token",
            "jwks_uri": f"{issuer}/keys",
            "userinfo_endpoint": f"{issuer}/protocol/openid-connect/userinfo",
            "response_types_supported": [
                "code",
                "token",
                "id_token",
                "code token",
                "code id_token",
                "token id_token",
                "code token id_token",
            ],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": ["PS512", "RS256"],
        }

    def auth_context(self, subject: str) -> TestAuthContext:
        """Mint a cluster-manager token and wrap it with its identity."""
        token = self.issue_cluster_manager_token(subject)
        claims = self.claims(token)
        return TestAuthContext(
            token=token, subject=claims.sub, issuer=claims.iss, audience=claims.aud
        )


def generate_test_jwt(username: str) -> str:
    """Cluster-manager token from the shared identity."""
    return TestIdentity.shared().issue_cluster_manager_token(username)


def get_jwks() -> str:
    """JWKS JSON of the shared identity."""
    return TestIdentity.shared().jwks_json()
