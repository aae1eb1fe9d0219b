"""Run the hassInk service: python -m hassink"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
