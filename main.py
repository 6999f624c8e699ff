"""CLI entry point: python main.py raise INGESTION critical data_quality "gap detected" """

import sys

from opsmon.cli import main

if __name__ == "__main__":
    sys.exit(main())
