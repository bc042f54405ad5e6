"""atlink - AT command channel CLI.

Thin launcher so the tool can be run from a source checkout.
"""

import sys

from atlink.cli import main


if __name__ == "__main__":
    sys.exit(main())
