#!/usr/bin/env python3
"""
HEIMDALL - Dynamic Web Crawler

Main entry point for running the crawler from a source checkout.

Usage:
    python main.py settings.properties crawl.properties seeds.txt
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from heimdall.cli import main


if __name__ == '__main__':
    main()
