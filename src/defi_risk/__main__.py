"""Allow running as python -m defi_risk."""

import sys

from defi_risk.cli import main

if __name__ == "__main__":
    sys.exit(main())
