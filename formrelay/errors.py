class FormRelayError(Exception):
    """Base class for errors raised by formrelay."""


class ConfigError(FormRelayError):
    pass


class Unauthenticated(FormRelayError):
    """No usable credential; the caller has to go through /auth."""


class AuthExchangeError(FormRelayError):
    """Authorization code could not be exchanged for a token."""


class ValidationError(FormRelayError):
    """Import body does not have the expected structure."""


class RemoteServiceError(FormRelayError):
    """A Google Forms API call failed. The original error is chained."""
