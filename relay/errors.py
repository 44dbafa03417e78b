"""
Relay error taxonomy

Every RelayError carries the message that is reported back to the
offending client as an `error` event. None of them close the connection.
"""


class RelayError(Exception):
    """Base class for errors reported to the sender as error{message}"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProtocolError(RelayError):
    """Malformed frame or unknown event type"""


class AuthError(RelayError):
    """Wrong access key"""


class AuthorizationError(RelayError):
    """Authenticated-only event sent before auth"""


class DeliveryError(Exception):
    """Send to a single peer failed; logged and skipped by broadcast"""
