"""CLI entry point: python main.py deploy --commit <sha>"""

import sys

from src.deployment.cli import main


if __name__ == "__main__":
    sys.exit(main())
