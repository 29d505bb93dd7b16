"""Logging setup. Library modules only create loggers; the CLI installs handlers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(crawl)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class CrawlContextFilter(logging.Filter):
    """Fills in ``crawl`` for records logged outside a crawl adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "crawl"):
            record.crawl = "-"
        return True


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    root_logger = logging.getLogger("sitemapper")
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    ch = logging.StreamHandler(stream=sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(formatter)
    ch.addFilter(CrawlContextFilter())
    root_logger.addHandler(ch)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(formatter)
        fh.addFilter(CrawlContextFilter())
        root_logger.addHandler(fh)


def get_crawl_logger(crawl_id: str, name: str = "sitemapper.crawl") -> logging.LoggerAdapter:
    return logging.LoggerAdapter(logging.getLogger(name), extra={"crawl": crawl_id})
