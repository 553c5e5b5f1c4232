"""Paillier homomorphic operations over arbitrary-precision ciphertexts."""

from .big_number import (
    BigNumber,
    MalformedNumberError,
    NonInvertibleError,
    verify_division,
    checked_inverse
)
from .paillier_ops import (
    # Keys and ciphertexts
    Ciphertext,
    PublicKey,
    PrivateKey,

    # Operations
    validate_public_key,
    validate_ciphertext,
    encrypt,
    encrypt_zero,
    trivial_zero,
    decrypt,
    decryption_quotient,
    combine,
    combine_all,
    combine_const,
    subtract,
    subtract_const,
    scale_const,
    divide_const,

    # Exceptions
    PaillierError,
    MalformedInputError,
    CiphertextRangeError,
    NonInvertibleConstantError,
    QuotientVerificationError
)

__all__ = [
    'BigNumber',
    'MalformedNumberError',
    'NonInvertibleError',
    'verify_division',
    'checked_inverse',

    'Ciphertext',
    'PublicKey',
    'PrivateKey',

    'validate_public_key',
    'validate_ciphertext',
    'encrypt',
    'encrypt_zero',
    'trivial_zero',
    'decrypt',
    'decryption_quotient',
    'combine',
    'combine_all',
    'combine_const',
    'subtract',
    'subtract_const',
    'scale_const',
    'divide_const',

    'PaillierError',
    'MalformedInputError',
    'CiphertextRangeError',
    'NonInvertibleConstantError',
    'QuotientVerificationError'
]
