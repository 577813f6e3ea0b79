#!/usr/bin/env python3
"""Convenience runner for the activity tracker tools.

Usage:
    python run.py replay --csv fixes.csv --sport ski
"""
import logging
import sys

from activity_tracker.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
