"""Exception hierarchy shared by the crawl frontier components."""


class CrawlerError(Exception):
    """Base class for crawler errors."""


class SubmitError(CrawlerError):
    """Raised when the fetch engine refuses a submission."""


class StartupError(CrawlerError):
    """Raised when a crawl cannot be started (e.g. the seed was rejected)."""


class InvariantError(CrawlerError, AssertionError):
    """Raised when an internal contract is broken.

    Not meant to be caught and recovered from; it signals a bug.
    """


class ConfigError(CrawlerError):
    """Raised when the configuration file is missing or malformed."""
