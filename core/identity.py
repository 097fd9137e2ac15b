"""OpenID Connect discovery documents for the tokens this service signs.

Downstream consumers (the realtime backend, reporting jobs) verify access
tokens against the JWKS published here. Only RSA keys are published; an
HMAC-signed development setup publishes an empty key set.
"""

from cryptography.hazmat.primitives import serialization
from django.conf import settings
from jwt.algorithms import RSAAlgorithm

SUPPORTED_CLAIMS = ["sub", "iss", "aud", "exp", "iat", "user_id", "username", "role", "full_name"]


def signing_algorithm():
    return settings.SIMPLE_JWT.get("ALGORITHM", "HS256")


def load_verifying_key():
    if not signing_algorithm().startswith("RS"):
        return None
    pem = settings.SIMPLE_JWT.get("VERIFYING_KEY")
    if not pem:
        return None
    return serialization.load_pem_public_key(pem.encode("utf-8"))


def build_jwks():
    public_key = load_verifying_key()
    if public_key is None:
        return {"keys": []}

    jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    jwk.update({"use": "sig", "alg": signing_algorithm(), "kid": settings.JWT_KEY_ID})
    return {"keys": [jwk]}


def build_openid_configuration(request):
    issuer = settings.OIDC_ISSUER or request.build_absolute_uri("/").rstrip("/")
    return {
        "issuer": issuer,
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "token_endpoint": f"{issuer}/api/v1/token/",
        "response_types_supported": ["token", "id_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": [signing_algorithm()],
        "claims_supported": SUPPORTED_CLAIMS,
    }
