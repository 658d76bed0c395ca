"""
PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

This module provides random value generation for codes, tokens, state
and nonce values, and the code challenge computation and verification
specified in RFC 7636 Sections 4.2 and 4.6.

References:
- RFC 7636: https://tools.ietf.org/html/rfc7636
"""

import base64
import hashlib
import secrets

S256 = "S256"
PLAIN = "plain"
SUPPORTED_METHODS = (S256, PLAIN)


def random_token(byte_len: int = 32, encoding: str = "urlsafe") -> str:
    """
    Generate a cryptographically secure opaque value.

    Args:
        byte_len: Number of random bytes (entropy is byte_len * 8 bits)
        encoding: "urlsafe" for unpadded base64url, "hex" for hexadecimal

    Returns:
        The encoded random value
    """
    if encoding == "hex":
        return secrets.token_hex(byte_len)
    if encoding == "urlsafe":
        return secrets.token_urlsafe(byte_len)
    raise ValueError(f"Unsupported token encoding: {encoding}")


def create_code_challenge(code_verifier: str, method: str = S256) -> str:
    """
    Derive the code_challenge for a code_verifier.

    Per RFC 7636 Section 4.2:
    - S256: code_challenge = BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
    - plain: code_challenge = code_verifier
    """
    if method == PLAIN:
        return code_verifier
    if method != S256:
        raise ValueError(f"Unsupported code_challenge_method: {method}")

    sha256_hash = hashlib.sha256(code_verifier.encode("ascii")).digest()

    # Base64url encode without padding
    b64_encoded = base64.urlsafe_b64encode(sha256_hash).decode("ascii")
    return b64_encoded.rstrip("=")


def verify_code_challenge(
    code_verifier: str, code_challenge: str, method: str = S256
) -> bool:
    """
    Verify a code_verifier against a stored code_challenge.

    Args:
        code_verifier: The code verifier string sent by the client
        code_challenge: The stored code challenge from authorization request
        method: The stored code_challenge_method

    Returns:
        True if verification succeeds, False otherwise (including for
        unknown methods and non-ASCII verifiers)
    """
    if not code_verifier or not code_challenge:
        return False

    try:
        computed_challenge = create_code_challenge(code_verifier, method)
    except (ValueError, UnicodeEncodeError):
        return False

    # Constant-time comparison; `==` short-circuits on the first mismatched byte
    return secrets.compare_digest(
        computed_challenge.encode("utf-8"), code_challenge.encode("utf-8")
    )


def generate_pkce_pair() -> tuple[str, str]:
    """
    Generate a (code_verifier, code_challenge) pair using S256.

    32 random bytes give a 43-character verifier (256 bits of entropy),
    the minimum length allowed by RFC 7636.
    """
    code_verifier = random_token(32)
    return code_verifier, create_code_challenge(code_verifier, S256)
