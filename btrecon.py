#!/usr/bin/env python3
"""btrecon command-line entry point."""

import sys

from app import main

if __name__ == '__main__':
    sys.exit(main())
