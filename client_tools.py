"""
Client-side helpers: key generation, encryption with fresh randomness and
decryption of published aggregates. These run on participants' machines,
never inside the aggregation system; keys come from python-paillier (phe).
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional

import gmpy2
from phe import paillier

from homomorphic import (
    BigNumber,
    Ciphertext,
    PrivateKey,
    PublicKey,
    decrypt,
    decryption_quotient,
    encrypt,
)

logger = logging.getLogger(__name__)

DEFAULT_KEY_BITS = 2048


@dataclass
class ClientKeyPair:
    public_key: PublicKey
    private_key: PrivateKey = field(repr=False)
    # Kept so results can be cross-checked against phe's own decryption
    phe_private_key: Optional[paillier.PaillierPrivateKey] = field(default=None, repr=False)

    @property
    def n(self) -> int:
        return self.public_key.n.to_int()

    def random_coprime(self) -> BigNumber:
        n = self.n
        while True:
            r = secrets.randbelow(n - 1) + 1
            if gmpy2.gcd(r, n) == 1:
                return BigNumber.from_int(r)

    def encrypt(self, value: int) -> Ciphertext:
        return encrypt(BigNumber.from_int(value), self.random_coprime(), self.public_key)

    def decrypt(self, ciphertext: Ciphertext, verify_quotient: bool = True) -> int:
        """Decrypt, optionally supplying a precomputed quotient for verification"""
        quotient = None
        if verify_quotient:
            quotient = decryption_quotient(ciphertext, self.public_key, self.private_key)
        return decrypt(ciphertext, self.public_key, self.private_key, quotient).to_int()

    def reference_decrypt(self, ciphertext: Ciphertext) -> int:
        """Decrypt with phe's CRT implementation"""
        if self.phe_private_key is None:
            raise ValueError("No reference key available")
        return self.phe_private_key.raw_decrypt(ciphertext.to_int())


def keypair_from_primes(p: int, q: int) -> ClientKeyPair:
    """Build a g = n + 1 key pair with lambda = (p-1)(q-1), mu = lambda^-1 mod n"""
    n = p * q
    lam = (p - 1) * (q - 1)
    mu = int(gmpy2.invert(lam, n))
    return ClientKeyPair(
        public_key=PublicKey.from_ints(n, n + 1),
        private_key=PrivateKey.from_ints(lam, mu)
    )


def generate_keypair(n_length: int = DEFAULT_KEY_BITS) -> ClientKeyPair:
    logger.info(f"Generating {n_length}-bit Paillier key pair")
    phe_public, phe_private = paillier.generate_paillier_keypair(n_length=n_length)

    keys = keypair_from_primes(phe_private.p, phe_private.q)
    if keys.n != phe_public.n:
        raise ValueError("Key pair mismatch")
    keys.phe_private_key = phe_private
    return keys
