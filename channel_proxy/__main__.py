"""Entry point for the channel proxy."""

import sys

from channel_proxy.server import main

if __name__ == "__main__":
    sys.exit(main())
