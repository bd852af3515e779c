"""
Heimdall - Dynamic Web Crawler with WARC Capture

A headless-browser crawler that discovers application state reachable from a
set of seed URLs by clicking through pages, and records every HTTP
transaction it observes into a WARC archive with a companion CDX index.

Copyright (c) 2025
Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "Heimdall Team"
__status__ = "Development"
