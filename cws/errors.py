# cws/errors.py
from typing import Any


class GatewayError(Exception):
    """Base class for every error raised by the gateway."""


class ProtocolError(GatewayError):
    """
    A frame could not be processed as a request: malformed JSON, missing
    type, unknown type or a missing required field.

    The pipeline turns it into an `error` frame on the same session; the
    session itself is never closed because of it.
    """
    def __init__(self, message: str, request_id: Any = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id


class KeyStoreError(GatewayError):
    pass


class KeyStoreInitFailed(KeyStoreError):
    """The key directory is unusable or the stored key pair could not be parsed."""


class SignFailed(KeyStoreError):
    pass


class ConfigurationLoadError(GatewayError):
    pass


class ClientError(GatewayError):
    pass


class AuthenticationFailed(ClientError):
    pass


class RequestFailed(ClientError):
    """The gateway answered a request with an `error` frame."""
    def __init__(self, message: str, request_id: Any = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
