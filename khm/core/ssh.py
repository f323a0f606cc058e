"""
Syntactic validation of SSH public key lines.

Only the shape of the line is checked (algorithm token, base64 body, optional
comment); the key material itself is not decoded.
"""
import re

SUPPORTED_KEY_PATTERNS = [
    re.compile(r"^ssh-rsa AAAA[0-9A-Za-z+/]+[=]{0,3}( .+)?$"),
    re.compile(r"^ssh-dss AAAA[0-9A-Za-z+/]+[=]{0,3}( .+)?$"),
    re.compile(r"^ecdsa-sha2-nistp(256|384|521) AAAA[0-9A-Za-z+/]+[=]{0,3}( .+)?$"),
    re.compile(r"^ssh-ed25519 AAAA[0-9A-Za-z+/]+[=]{0,3}( .+)?$"),
]


def is_valid_ssh_key(public_key: str) -> bool:
    """Return True if the line looks like a supported SSH public key."""
    return any(pattern.fullmatch(public_key) for pattern in SUPPORTED_KEY_PATTERNS)

