"""ghe-backup-ng: ghe_backup_ng/__main__.py.

Take a point-in-time incremental snapshot of a GitHub Enterprise appliance.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
