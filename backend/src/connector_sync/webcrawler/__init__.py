"""Website crawling connector."""

from .crawl_scheduler import (
    CrawlLimits,
    CrawlReport,
    CrawlScheduler,
    FetchedPage,
    HttpPageFetcher,
    PageFetcher,
)
from .permissions import ConnectorResource, list_resources, retrieve_parents, retrieve_titles
from .activities import WebCrawlerActivities, crawl_task_id

__all__ = [
    "ConnectorResource",
    "CrawlLimits",
    "CrawlReport",
    "CrawlScheduler",
    "FetchedPage",
    "HttpPageFetcher",
    "PageFetcher",
    "WebCrawlerActivities",
    "crawl_task_id",
    "list_resources",
    "retrieve_parents",
    "retrieve_titles",
]
