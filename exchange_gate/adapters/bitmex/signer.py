"""
Request signing for private REST endpoints.

Signature:
    hex(HMAC_SHA256(secret, verb + path + nonce + body))

    - verb: Upper-case HTTP method ("GET", "POST", "DELETE")
    - path: Full request path including the API prefix and, for reads, the
      query string (e.g., "/api/v1/order?filter=%7B%22open%22%3A+true%7D")
    - nonce: Decimal string of an integer that increases on every call
    - body: Request body for writes, empty string for reads

Headers:
    api-key, api-nonce, api-signature
"""

import hashlib
import hmac
import threading
import time
from typing import Callable, Dict

from exchange_gate.config.models import Credentials


class NonceGenerator:
    """
    Strictly increasing millisecond nonce.

    Derived from wall-clock milliseconds and ratcheted past the last value
    handed out, so calls within the same millisecond or after the clock steps
    backwards still increase.

    Example:
        >>> nonces = NonceGenerator()
        >>> a, b = nonces.next(), nonces.next()
        >>> b > a
        True
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Args:
            clock: Returns wall-clock time in seconds.
        """
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    @property
    def last(self) -> int:
        return self._last

    def next(self) -> int:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            self._last = max(now_ms, self._last + 1)
            return self._last


class Signer:
    """
    HMAC-SHA256 request signer.

    Stateless apart from the secret: the same inputs always produce the same
    64-character lowercase hex signature.
    """

    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def sign(self, verb: str, path: str, nonce: int, body: str = "") -> str:
        message = f"{verb.upper()}{path}{nonce}{body}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def __repr__(self) -> str:
        return "Signer(secret=***)"


class RequestAuthenticator:
    """
    Produces signed headers for one credential set.

    Owns the Signer and the NonceGenerator for that key pair so nonce
    monotonicity holds per credential set.
    """

    def __init__(
        self,
        credentials: Credentials,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = credentials.api_key
        self._signer = Signer(credentials.api_secret.get_secret_value())
        self._nonces = NonceGenerator(clock)

    @property
    def last_nonce(self) -> int:
        return self._nonces.last

    def headers(self, verb: str, path: str, body: str = "") -> Dict[str, str]:
        """
        Build authentication headers for a request.

        Args:
            verb: HTTP method.
            path: Full request path, including the query string for reads.
            body: Encoded request body for writes.

        Returns:
            Dict[str, str]: api-key, api-nonce and api-signature headers.
        """
        nonce = self._nonces.next()
        return {
            "api-key": self.api_key,
            "api-nonce": str(nonce),
            "api-signature": self._signer.sign(verb, path, nonce, body),
        }
