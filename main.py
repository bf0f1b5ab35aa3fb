"""
Entry point for the WordPress blog migration tool.
"""

import sys

from blog_migrator.cli import main

if __name__ == "__main__":
    sys.exit(main())
