"""Entry point for ``python -m oauthkit``."""

import sys

from .cli import main


sys.exit(main())
