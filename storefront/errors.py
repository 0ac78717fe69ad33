"""Error taxonomy for the payment core.

Each error carries the HTTP status it maps to. The app factory registers
one JSON handler for StorefrontError, so services raise and blueprints stay
thin.
"""


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(StorefrontError):
    """Malformed or empty input. No side effects happened."""

    status_code = 400


class AuthenticationError(StorefrontError):
    status_code = 401


class ProductNotFoundError(StorefrontError):
    """Requested product ids that don't resolve to active, priced catalog rows."""

    status_code = 404

    def __init__(self, missing_ids):
        self.missing_ids = list(missing_ids)
        super().__init__(
            f"Products not found or inactive: {', '.join(self.missing_ids)}"
        )

    def to_dict(self):
        data = super().to_dict()
        data["missing"] = self.missing_ids
        return data


class UpstreamError(StorefrontError):
    """Payment processor API failure."""

    status_code = 502


class ConfigurationError(StorefrontError):
    """A required secret or setting is absent."""

    status_code = 500
