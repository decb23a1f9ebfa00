"""PKCE (Proof Key for Code Exchange) implementation."""

import base64
import hashlib
import secrets
from dataclasses import dataclass

# RFC 7636 unreserved characters
UNRESERVED_CHARACTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

CODE_VERIFIER_LENGTH = 128
STATE_LENGTH = 43


@dataclass(frozen=True)
class PKCEPair:
    """Code verifier kept server-side and the challenge sent to the provider."""

    code_verifier: str
    code_challenge: str


def generate_random_string(length: int) -> str:
    """Generate a random string over the unreserved URL alphabet."""
    return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def generate_code_verifier(length: int = CODE_VERIFIER_LENGTH) -> str:
    """Generate a cryptographically random code verifier."""
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be between 43 and 128")
    return generate_random_string(length)


def generate_code_challenge(code_verifier: str) -> str:
    """Generate code challenge from code verifier using S256 method."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    """Verify that code_verifier matches code_challenge."""
    expected = generate_code_challenge(code_verifier)
    return secrets.compare_digest(expected, code_challenge)


def generate_pkce() -> PKCEPair:
    """Generate a fresh verifier/challenge pair for one connection attempt."""
    code_verifier = generate_code_verifier()
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
    )


def generate_state() -> str:
    """Generate a CSRF state token."""
    return generate_random_string(STATE_LENGTH)
