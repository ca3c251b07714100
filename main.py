#!/usr/bin/env python3
"""
Main entry point for pointfit.
Prints library information and runs the command line interface.
"""

import sys

from pointfit import print_info
from pointfit.cli import main as cli_main


def main():
    """Main entry point"""
    if len(sys.argv) == 1:
        print_info()
        return 0
    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
