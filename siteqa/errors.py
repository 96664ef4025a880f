# errors.py


class SiteQAError(Exception):
    """Base class for every error raised by siteqa."""


class ConfigError(SiteQAError, ValueError):
    """A configuration value failed validation."""


class InvalidLocation(SiteQAError):
    """The start location or scope could not be parsed as an http(s) URL."""


class FetchFailed(SiteQAError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class UnsupportedFormat(SiteQAError):
    """No extraction path exists for a document's content kind."""


class ExtractionFailed(SiteQAError):
    """An extraction path exists but failed for this document."""


class EmbeddingFailed(SiteQAError):
    pass


class TransientEmbeddingError(EmbeddingFailed):
    """Worth retrying: timeouts, connection resets, 429 / 5xx."""


class PermanentEmbeddingError(EmbeddingFailed):
    """Retrying will not help: bad request, input too long, bad model."""


class IndexNotFound(SiteQAError):
    def __init__(self, scope: str):
        super().__init__(f"No index for scope {scope}")
        self.scope = scope


class IndexEmpty(SiteQAError):
    def __init__(self, scope: str, summary=None):
        super().__init__(f"Index for scope {scope} has no chunks")
        self.scope = scope
        # build summary when raised by an index build
        self.summary = summary
