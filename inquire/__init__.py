"""inquire - a small crawl frontier.

Discovers pages reachable from a seed URL, records the link graph and
schedules bounded fetching of in-scope URLs.
"""

from .crawler import Crawler, CrawlOptions, Status
from .errors import ConfigError, CrawlerError, InvariantError, StartupError, SubmitError
from .matcher import HostMatcher, Matcher, PatternMatcher
from .node import Node, NodeView, ResponseData
from .recorder import Recorder
from .scheduler import Scheduler, SchedulerState

__version__ = "0.1.0"

__all__ = [
    "Crawler",
    "CrawlOptions",
    "Status",
    "ConfigError",
    "CrawlerError",
    "InvariantError",
    "StartupError",
    "SubmitError",
    "HostMatcher",
    "Matcher",
    "PatternMatcher",
    "Node",
    "NodeView",
    "ResponseData",
    "Recorder",
    "Scheduler",
    "SchedulerState",
]
