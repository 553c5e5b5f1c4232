"""
Paillier Homomorphic Operation Layer
====================================
Stateless operations over Paillier ciphertexts. Every function takes its
ciphertexts, constants and the public key as arguments and returns a fresh
ciphertext; nothing is cached and no input is mutated.

For a public key (n, g) and a plaintext m < n:

    E(m, r)         = g^m * r^n            mod n^2
    E(a) * E(b)     = E(a + b)
    E(a) * g^c      = E(a + c)
    E(a) ^ c        = E(a * c)
    E(b) ^ (n - 1)  = E(-b)

Decryption follows L(c^lambda mod n^2) * mu mod n with L(x) = (x - 1) / n.
The division inside L can be supplied by the caller as a precomputed
quotient, in which case it is verified instead of computed.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import gmpy2

from .big_number import (
    BigNumber,
    MalformedNumberError,
    NonInvertibleError,
    checked_inverse,
    verify_division,
)

logger = logging.getLogger(__name__)

# Ciphertexts travel in the same encoding as any other big number
Ciphertext = BigNumber

# ============================================================================
# EXCEPTIONS
# ============================================================================


class PaillierError(Exception):
    """Base exception for cipher-layer failures"""
    pass


class MalformedInputError(PaillierError):
    """Raised when a key, ciphertext or constant is malformed"""
    pass


class CiphertextRangeError(MalformedInputError):
    """Raised when a ciphertext lies outside [0, n^2)"""
    pass


class NonInvertibleConstantError(PaillierError):
    """Raised when a divisor shares a nontrivial factor with n"""
    pass


class QuotientVerificationError(PaillierError):
    """Raised when a caller-supplied decryption quotient does not check out"""
    pass


# ============================================================================
# KEYS
# ============================================================================


@dataclass(frozen=True)
class PublicKey:
    """Paillier public parameters (n, g)"""
    n: BigNumber
    g: BigNumber

    @classmethod
    def from_ints(cls, n: int, g: Optional[int] = None) -> "PublicKey":
        if g is None:
            g = n + 1
        return cls(n=BigNumber.from_int(n), g=BigNumber.from_int(g))

    def to_hex(self) -> dict:
        return {'n': self.n.to_hex(), 'g': self.g.to_hex()}

    @classmethod
    def from_hex(cls, data: dict) -> "PublicKey":
        return cls(n=BigNumber.from_hex(data['n']), g=BigNumber.from_hex(data['g']))

    def matches(self, other: "PublicKey") -> bool:
        """Compare by value, ignoring how the components were encoded"""
        if not isinstance(other, PublicKey):
            return False
        return (self.n.to_int(), self.g.to_int()) == (other.n.to_int(), other.g.to_int())


@dataclass(frozen=True)
class PrivateKey:
    """Paillier private parameters (lambda, mu); never persisted"""
    lambda_: BigNumber
    mu: BigNumber

    @classmethod
    def from_ints(cls, lambda_: int, mu: int) -> "PrivateKey":
        return cls(lambda_=BigNumber.from_int(lambda_), mu=BigNumber.from_int(mu))

    def __repr__(self) -> str:
        return "PrivateKey(<redacted>)"


# ============================================================================
# INPUT VALIDATION
# ============================================================================


def _number(value: BigNumber, label: str) -> "gmpy2.mpz":
    if not isinstance(value, BigNumber):
        raise MalformedInputError(
            f"{label} must be a BigNumber, got {type(value).__name__}")
    try:
        return value.to_mpz()
    except MalformedNumberError as e:
        raise MalformedInputError(f"Malformed {label}: {e}") from e


def _non_negative(value: BigNumber, label: str) -> "gmpy2.mpz":
    number = _number(value, label)
    if number < 0:
        raise MalformedInputError(f"{label} must be non-negative")
    return number


def _public_params(public_key: PublicKey) -> Tuple["gmpy2.mpz", "gmpy2.mpz", "gmpy2.mpz"]:
    if not isinstance(public_key, PublicKey):
        raise MalformedInputError("Public key required")

    n = _non_negative(public_key.n, "public key n")
    g = _non_negative(public_key.g, "public key g")
    if n <= 1:
        raise MalformedInputError("Public key n must exceed 1")

    n_square = n * n
    if not 0 < g < n_square:
        raise MalformedInputError("Public key g must lie in (0, n^2)")
    return n, g, n_square


def _ciphertext(value: BigNumber, n_square, label: str = "ciphertext") -> "gmpy2.mpz":
    number = _number(value, label)
    if not 0 <= number < n_square:
        raise CiphertextRangeError(f"{label} lies outside [0, n^2)")
    return number


def _randomness(value: BigNumber) -> "gmpy2.mpz":
    # Coprimality with n is the client's responsibility
    number = _number(value, "randomness")
    if number <= 0:
        raise MalformedInputError("Randomness must be positive")
    return number


def validate_public_key(public_key: PublicKey) -> int:
    """Raise MalformedInputError unless the key is usable; returns n's bit length"""
    n, _, _ = _public_params(public_key)
    return n.bit_length()


def validate_ciphertext(ciphertext: Ciphertext, public_key: PublicKey):
    """Raise unless ciphertext is well-formed and lies in [0, n^2)"""
    _, _, n_square = _public_params(public_key)
    _ciphertext(ciphertext, n_square)


# ============================================================================
# ENCRYPTION AND DECRYPTION
# ============================================================================


def encrypt(value: BigNumber, randomness: BigNumber, public_key: PublicKey) -> Ciphertext:
    """Encrypt a non-negative plaintext: g^value * randomness^n mod n^2"""
    n, g, n_square = _public_params(public_key)
    m = _non_negative(value, "plaintext")
    r = _randomness(randomness)

    c = (gmpy2.powmod(g, m, n_square) * gmpy2.powmod(r, n, n_square)) % n_square
    return BigNumber.from_int(c)


def encrypt_zero(randomness: BigNumber, public_key: PublicKey) -> Ciphertext:
    """Fresh encryption of zero, randomness^n mod n^2, used for blinding"""
    n, _, n_square = _public_params(public_key)
    r = _randomness(randomness)
    return BigNumber.from_int(gmpy2.powmod(r, n, n_square))


def trivial_zero() -> Ciphertext:
    """Randomness-free encryption of zero; the identity element of combine"""
    return BigNumber.from_int(1)


def decryption_quotient(ciphertext: Ciphertext, public_key: PublicKey,
                        private_key: PrivateKey) -> BigNumber:
    """Compute (c^lambda mod n^2 - 1) / n, the quotient decrypt() verifies"""
    if not isinstance(private_key, PrivateKey):
        raise MalformedInputError("Private key required")

    n, _, n_square = _public_params(public_key)
    c = _ciphertext(ciphertext, n_square)
    lam = _non_negative(private_key.lambda_, "private key lambda")

    alpha = gmpy2.powmod(c, lam, n_square)
    return BigNumber.from_int((alpha - 1) // n)


def decrypt(ciphertext: Ciphertext, public_key: PublicKey, private_key: PrivateKey,
            precomputed_quotient: Optional[BigNumber] = None) -> BigNumber:
    """
    Decrypt a ciphertext.

    If precomputed_quotient is given it must satisfy
    quotient * n == (ciphertext^lambda mod n^2) - 1 exactly, otherwise the
    call fails with QuotientVerificationError. Without it the quotient is
    computed by ordinary integer division.
    """
    if not isinstance(private_key, PrivateKey):
        raise MalformedInputError("Private key required")

    n, _, n_square = _public_params(public_key)
    c = _ciphertext(ciphertext, n_square)
    lam = _non_negative(private_key.lambda_, "private key lambda")
    mu = _non_negative(private_key.mu, "private key mu")

    alpha = gmpy2.powmod(c, lam, n_square)

    if precomputed_quotient is None:
        quotient = (alpha - 1) // n
    else:
        quotient = _non_negative(precomputed_quotient, "decryption quotient")
        if not verify_division(alpha - 1, n, quotient):
            logger.warning("Rejected decryption with inconsistent quotient")
            raise QuotientVerificationError(
                "Supplied quotient does not divide (alpha - 1) by n")

    return BigNumber.from_int((quotient * mu) % n)


# ============================================================================
# HOMOMORPHIC OPERATIONS
# ============================================================================


def combine(a: Ciphertext, b: Ciphertext, public_key: PublicKey) -> Ciphertext:
    """Homomorphic addition: a * b mod n^2"""
    _, _, n_square = _public_params(public_key)
    x = _ciphertext(a, n_square, "left ciphertext")
    y = _ciphertext(b, n_square, "right ciphertext")
    return BigNumber.from_int((x * y) % n_square)


def combine_all(ciphertexts: Iterable[Ciphertext], public_key: PublicKey) -> Ciphertext:
    """Fold a non-empty sequence of ciphertexts with combine()"""
    _, _, n_square = _public_params(public_key)

    total = None
    for index, ciphertext in enumerate(ciphertexts):
        value = _ciphertext(ciphertext, n_square, f"ciphertext[{index}]")
        total = value if total is None else (total * value) % n_square

    if total is None:
        raise MalformedInputError("Nothing to combine")
    return BigNumber.from_int(total)


def combine_const(a: Ciphertext, constant: BigNumber, public_key: PublicKey) -> Ciphertext:
    """Add a plaintext constant: a * g^constant mod n^2"""
    _, g, n_square = _public_params(public_key)
    x = _ciphertext(a, n_square)
    k = _non_negative(constant, "constant")
    return BigNumber.from_int((x * gmpy2.powmod(g, k, n_square)) % n_square)


def subtract(a: Ciphertext, b: Ciphertext, public_key: PublicKey) -> Ciphertext:
    """Homomorphic subtraction: a * b^(n-1) mod n^2"""
    n, _, n_square = _public_params(public_key)
    x = _ciphertext(a, n_square, "left ciphertext")
    y = _ciphertext(b, n_square, "right ciphertext")
    return BigNumber.from_int((x * gmpy2.powmod(y, n - 1, n_square)) % n_square)


def subtract_const(a: Ciphertext, constant: BigNumber, public_key: PublicKey) -> Ciphertext:
    """Subtract a plaintext constant: a * g^(n - constant) mod n^2"""
    n, g, n_square = _public_params(public_key)
    x = _ciphertext(a, n_square)
    k = _non_negative(constant, "constant") % n
    return BigNumber.from_int((x * gmpy2.powmod(g, n - k, n_square)) % n_square)


def scale_const(a: Ciphertext, constant: BigNumber, public_key: PublicKey) -> Ciphertext:
    """Multiply the plaintext by a constant: a^constant mod n^2"""
    _, _, n_square = _public_params(public_key)
    x = _ciphertext(a, n_square)
    k = _non_negative(constant, "constant")
    return BigNumber.from_int(gmpy2.powmod(x, k, n_square))


def divide_const(a: Ciphertext, constant: BigNumber, public_key: PublicKey) -> Ciphertext:
    """
    Multiply the plaintext by constant^-1 mod n.

    The result decrypts to an exact quotient only when constant divides the
    plaintext; otherwise it is the modular product. Fails with
    NonInvertibleConstantError when gcd(constant, n) != 1.
    """
    n, _, _ = _public_params(public_key)
    k = _non_negative(constant, "constant")
    try:
        inverse = checked_inverse(k, n)
    except NonInvertibleError as e:
        logger.warning("Rejected division by a constant not invertible mod n")
        raise NonInvertibleConstantError(str(e)) from e

    return scale_const(a, BigNumber.from_int(inverse), public_key)
