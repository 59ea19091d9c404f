class DeployProxyError(ValueError):
    """Base class for all errors that end the processing of a single event."""

    status_code = 500
    public_message = "Internal Service Error"


class ParseError(DeployProxyError):
    """Raised when a transport body cannot be decoded into its event."""

    pass


class AuthenticityError(DeployProxyError):
    """Raised when an event cannot be shown to come from its claimed source."""

    status_code = 401
    public_message = "Request could not be validated"


class OriginError(AuthenticityError):
    """Raised when a request arrives from outside the published source ranges."""

    status_code = 400
    public_message = "Bad Request"


class ValidationError(DeployProxyError):
    """Raised when an externally derived value fails its allow-list pattern."""

    pass


class UpstreamError(DeployProxyError):
    """Raised when Jenkins or a source API call fails or answers unexpectedly."""

    pass
