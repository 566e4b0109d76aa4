from typing import Optional


class ProxyError(Exception):
    """Base class for errors that are reported to the caller as JSON."""
    status_code = 500
    error = "Failed to fetch Oura data"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.error)
        self.message = message

    def to_body(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class MissingTokenError(ProxyError):
    """Raised when the request carries no Oura access token."""
    status_code = 400
    error = "Oura token is required"


class MalformedBodyError(ProxyError):
    """Raised when the request body cannot be parsed into a fetch request."""
    status_code = 400
    error = "Malformed request body"

    def to_body(self) -> dict:
        # Validation details go into the error itself, 400s only carry {error}
        if self.message:
            return {"error": f"{self.error}: {self.message}"}
        return {"error": self.error}


class MethodNotAllowedError(ProxyError):
    status_code = 405
    error = "Method not allowed"


class UpstreamUnavailableError(ProxyError):
    """Raised when no Oura metric family could be reached at all."""
    status_code = 500

    def __init__(self, family: str, message: Optional[str] = None):
        super().__init__(message or f"Oura API unavailable (first failure: {family})")
        self.family = family
