"""Allow running as ``python -m emmavault``."""

from __future__ import annotations

import sys

from emmavault.main import main

sys.exit(main())
