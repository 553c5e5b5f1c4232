"""Caller authentication for requests reaching the aggregation system."""

from .request_auth import (
    AuthenticationError,
    CallerCredentials,
    SignedRequest,
    RequestVerifier,
    sign_request,
    identity_of
)

__all__ = [
    'AuthenticationError',
    'CallerCredentials',
    'SignedRequest',
    'RequestVerifier',
    'sign_request',
    'identity_of'
]
