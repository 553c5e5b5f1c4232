"""
Authenticated requests
======================
Callers are identified by their Ed25519 public key. Every state-changing
request is signed over its canonical JSON form together with a fresh nonce
and timestamp; the verifier rejects stale, replayed or tampered requests and
returns the authenticated identity.
"""

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

logger = logging.getLogger(__name__)

NONCE_BYTES = 16
DEFAULT_MAX_CLOCK_SKEW = 300  # seconds


class AuthenticationError(Exception):
    """Raised when a request cannot be attributed to its claimed identity"""
    pass


def identity_of(public_key: Ed25519PublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    ).hex()


@dataclass
class CallerCredentials:
    """Signing key of one caller"""
    private_key: Ed25519PrivateKey = field(repr=False)

    @classmethod
    def generate(cls) -> "CallerCredentials":
        return cls(private_key=Ed25519PrivateKey.generate())

    @property
    def identity(self) -> str:
        return identity_of(self.private_key.public_key())


@dataclass(frozen=True)
class SignedRequest:
    action: str
    collection_id: str
    payload: Dict[str, Any]
    identity: str
    nonce: str
    timestamp: float
    signature: str

    def signing_bytes(self) -> bytes:
        return _canonical(self.action, self.collection_id, self.payload,
                          self.identity, self.nonce, self.timestamp)


def _canonical(action: str, collection_id: str, payload: Dict[str, Any],
               identity: str, nonce: str, timestamp: float) -> bytes:
    return json.dumps({
        'action': action,
        'collection_id': collection_id,
        'payload': payload,
        'identity': identity,
        'nonce': nonce,
        'timestamp': timestamp
    }, sort_keys=True, separators=(',', ':')).encode()


def sign_request(credentials: CallerCredentials, action: str, collection_id: str,
                 payload: Optional[Dict[str, Any]] = None,
                 timestamp: Optional[float] = None) -> SignedRequest:
    """Sign a request on behalf of credentials' identity"""
    payload = payload or {}
    nonce = os.urandom(NONCE_BYTES).hex()
    timestamp = time.time() if timestamp is None else timestamp
    identity = credentials.identity

    signature = credentials.private_key.sign(
        _canonical(action, collection_id, payload, identity, nonce, timestamp))

    return SignedRequest(
        action=action,
        collection_id=collection_id,
        payload=payload,
        identity=identity,
        nonce=nonce,
        timestamp=timestamp,
        signature=signature.hex()
    )


class RequestVerifier:
    """Checks freshness, replay and signature of incoming requests"""

    def __init__(self, max_clock_skew: float = DEFAULT_MAX_CLOCK_SKEW,
                 clock: Optional[Callable[[], float]] = None):
        self.max_clock_skew = max_clock_skew
        self.clock = clock or time.time
        self._seen_nonces: Dict[str, float] = {}
        self._lock = threading.Lock()

    def verify(self, request: SignedRequest) -> str:
        """Return the authenticated identity or raise AuthenticationError"""
        now = self.clock()
        if abs(now - request.timestamp) > self.max_clock_skew:
            raise AuthenticationError("Request timestamp outside accepted window")

        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(request.identity))
            signature = bytes.fromhex(request.signature)
            nonce = bytes.fromhex(request.nonce)
        except ValueError as e:
            raise AuthenticationError(f"Malformed identity or signature: {e}") from e

        try:
            public_key.verify(signature, request.signing_bytes())
        except InvalidSignature as e:
            logger.warning(f"Invalid signature on {request.action} from {request.identity[:16]}")
            raise AuthenticationError("Invalid signature") from e

        nonce_hash = hashlib.sha256(nonce).hexdigest()
        with self._lock:
            self._expire_nonces(now)
            if nonce_hash in self._seen_nonces:
                logger.warning("Replay attack detected: duplicate nonce")
                raise AuthenticationError("Replayed request")
            self._seen_nonces[nonce_hash] = request.timestamp

        return request.identity

    def _expire_nonces(self, now: float):
        # A nonce older than the skew window can no longer pass the freshness check
        horizon = now - self.max_clock_skew
        for nonce_hash in [h for h, ts in self._seen_nonces.items() if ts < horizon]:
            del self._seen_nonces[nonce_hash]
