"""HMAC-SHA256 request signing for private venue calls."""

import base64
import binascii
import hashlib
import hmac
from typing import Dict, Optional, Union

from ..exceptions import SigningError

# Header names expected by the venue
HEADER_KEY = 'ACCESS-KEY'
HEADER_SIGN = 'ACCESS-SIGN'
HEADER_TIMESTAMP = 'ACCESS-TIMESTAMP'
HEADER_PASSPHRASE = 'ACCESS-PASSPHRASE'


def _decode_secret(secret_key_b64: str) -> bytearray:
    if not secret_key_b64:
        raise SigningError("API secret is empty")
    try:
        return bytearray(base64.b64decode(secret_key_b64, validate=True))
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"API secret is not valid base64: {e}") from None


def sign(
    secret_key_b64: str,
    timestamp: Union[str, int, float],
    method: str,
    path: str,
    body: str = "",
) -> str:
    """
    Sign a request.

    The prehash string is ``timestamp + METHOD + path + body`` where path
    includes the query string. It is signed with HMAC-SHA256 keyed by the
    base64-decoded secret and returned base64 encoded.

    Raises:
        SigningError: If the secret key cannot be decoded
    """
    secret = _decode_secret(secret_key_b64)
    try:
        prehash = f"{timestamp}{method.upper()}{path}{body or ''}"
        digest = hmac.new(secret, prehash.encode('utf-8'), hashlib.sha256).digest()
        return base64.b64encode(digest).decode('ascii')
    finally:
        # scrub decoded key material
        for i in range(len(secret)):
            secret[i] = 0


def build_auth_headers(
    api_key: str,
    secret_key_b64: str,
    timestamp: Union[str, int, float],
    method: str,
    path: str,
    body: str = "",
    passphrase: Optional[str] = None,
) -> Dict[str, str]:
    """Build the authentication header set for one signed call."""
    headers = {
        HEADER_KEY: api_key,
        HEADER_SIGN: sign(secret_key_b64, timestamp, method, path, body),
        HEADER_TIMESTAMP: str(timestamp),
    }
    if passphrase:
        headers[HEADER_PASSPHRASE] = passphrase
    return headers
