"""Custom exceptions for the gmaps-crawler library."""


class GMapsCrawlerError(Exception):
    """Base exception for all gmaps-crawler errors."""
    pass


class ConfigurationError(GMapsCrawlerError):
    """Raised when configuration is invalid or incomplete."""
    pass


class GeolocationError(GMapsCrawlerError):
    """Raised when an area cannot be resolved to a geometry."""
    pass


class ResponseParseError(GMapsCrawlerError):
    """Raised when an intercepted response body has an unexpected shape."""

    def __init__(self, message: str, response_status: int = None, response_body: str = None):
        super().__init__(message)
        self.response_status = response_status
        self.response_body = response_body


class ReviewFetchError(GMapsCrawlerError):
    """Raised when a review page request fails or times out."""
    pass


class SearchTaskError(GMapsCrawlerError):
    """Raised when a search task ended in a state that requires a retry."""
    pass
