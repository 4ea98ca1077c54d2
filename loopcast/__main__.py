#!/usr/bin/env python3
"""
loopcast main entry point.

Allows loopcast to be run as a module: python3 -m loopcast
"""

import sys

from loopcast.cli import main

if __name__ == "__main__":
    sys.exit(main())
