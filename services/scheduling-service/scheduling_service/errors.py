class SchedulingError(Exception):
    pass


class InvalidTimeError(SchedulingError, ValueError):
    pass


class MappingError(SchedulingError):
    """Base for anything that goes wrong talking to the mapping provider."""


class ProviderError(MappingError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ProviderError):
    def __init__(self, message: str = "Mapping provider rate limit reached"):
        super().__init__(message, status_code=429)


class GeocodingError(MappingError):
    pass
