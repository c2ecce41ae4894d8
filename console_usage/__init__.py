"""
Console usage scraper: session-validated browser scraping of the Console
usage page, versioned local history, and sync to a receiving endpoint.
"""
__version__ = "1.0.0"
