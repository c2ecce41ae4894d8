# Orchestrator module
from .auto_scraper import AutoScraper, CycleResult
from .scheduler import CycleScheduler

__all__ = ["AutoScraper", "CycleResult", "CycleScheduler"]
