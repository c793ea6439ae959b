"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The verifier binds the authorization code to this client, so an
intercepted redirect cannot be redeemed by anyone else.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass


# Random bytes behind each verifier (256 bits of entropy)
VERIFIER_BYTES = 32

CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is sent in the token request.
    The challenge is a SHA256 hash of the verifier sent in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD


def _b64url(data: bytes) -> str:
    """Base64URL encode without padding (per RFC 7636)."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """Generate a cryptographically random code verifier.

    32 bytes from the OS CSPRNG, Base64URL-encoded: 43 characters, all
    in the unreserved URI set RFC 7636 Section 4.1 allows.

    Returns:
        Code verifier string
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """Generate S256 code challenge from verifier.

    Per RFC 7636 Section 4.2:
    code_challenge = BASE64URL(SHA256(code_verifier))

    Args:
        verifier: The code verifier string

    Returns:
        Base64URL-encoded SHA256 hash of the verifier
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge).

    Returns:
        PKCEPair with verifier, challenge, and method (always "S256")
    """
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Generate a cryptographically random state parameter.

    The state parameter protects against CSRF attacks by ensuring
    the authorization response came from a request we initiated.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)
