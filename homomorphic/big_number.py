"""
Arbitrary-precision number adapter
==================================
Wire representation of big integers and the handful of engine primitives the
cipher layer needs. All arithmetic is delegated to gmpy2.
"""

import logging
from dataclasses import dataclass
from typing import Union

import gmpy2

logger = logging.getLogger(__name__)


class MalformedNumberError(ValueError):
    """Raised when a BigNumber encoding is inconsistent"""
    pass


class NonInvertibleError(ArithmeticError):
    """Raised when a modular inverse does not exist"""
    pass


@dataclass(frozen=True)
class BigNumber:
    """Big-endian magnitude with sign flag and bit-length marker"""
    val: bytes
    neg: bool = False
    bitlen: int = 0

    @classmethod
    def from_int(cls, value: Union[int, "gmpy2.mpz"]) -> "BigNumber":
        value = int(value)
        magnitude = abs(value)
        bitlen = magnitude.bit_length()
        length = max(1, (bitlen + 7) // 8)
        return cls(val=magnitude.to_bytes(length, 'big'), neg=value < 0, bitlen=bitlen)

    @classmethod
    def from_bytes(cls, data: bytes, neg: bool = False) -> "BigNumber":
        if not data:
            raise MalformedNumberError("Empty byte string")
        magnitude = int.from_bytes(data, 'big')
        return cls(val=bytes(data), neg=neg and magnitude != 0, bitlen=magnitude.bit_length())

    @classmethod
    def from_hex(cls, text: str) -> "BigNumber":
        """Parse '0x'-prefixed or bare hex; a leading '-' marks a negative value"""
        if not isinstance(text, str):
            raise MalformedNumberError(f"Expected hex string, got {type(text).__name__}")
        neg = text.startswith('-')
        digits = text[1:] if neg else text
        if digits[:2].lower() == '0x':
            digits = digits[2:]
        if len(digits) % 2:
            digits = '0' + digits
        try:
            data = bytes.fromhex(digits)
        except ValueError as e:
            raise MalformedNumberError(f"Invalid hex: {text!r}") from e
        return cls.from_bytes(data, neg=neg)

    def to_mpz(self) -> "gmpy2.mpz":
        if not isinstance(self.val, (bytes, bytearray)) or len(self.val) == 0:
            raise MalformedNumberError("Zero-length value")
        magnitude = gmpy2.mpz(int.from_bytes(self.val, 'big'))
        if magnitude.bit_length() != self.bitlen:
            raise MalformedNumberError(
                f"Bit-length marker {self.bitlen} does not match value ({magnitude.bit_length()} bits)")
        return -magnitude if self.neg else magnitude

    def to_int(self) -> int:
        return int(self.to_mpz())

    def to_hex(self) -> str:
        value = self.to_int()
        prefix = '-0x' if value < 0 else '0x'
        text = format(abs(value), 'x')
        if len(text) % 2:
            text = '0' + text
        return prefix + text

    def is_zero(self) -> bool:
        return self.to_mpz() == 0


def verify_division(dividend, divisor, quotient) -> bool:
    """Check that quotient * divisor == dividend exactly, without dividing"""
    if divisor == 0:
        return False
    return gmpy2.mpz(quotient) * gmpy2.mpz(divisor) == gmpy2.mpz(dividend)


def checked_inverse(value, modulus) -> "gmpy2.mpz":
    """Inverse of value mod modulus; raises NonInvertibleError if gcd != 1"""
    value = gmpy2.mpz(value)
    modulus = gmpy2.mpz(modulus)
    if modulus <= 1:
        raise NonInvertibleError("Modulus must exceed 1")
    if gmpy2.gcd(value, modulus) != 1:
        raise NonInvertibleError("Value shares a factor with the modulus")

    inverse = gmpy2.invert(value, modulus)
    if (value * inverse) % modulus != 1:
        raise NonInvertibleError("Inverse verification failed")
    return inverse
