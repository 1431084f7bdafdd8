"""Allow running as python -m boqcalc."""

import sys

from boqcalc.cli import main

sys.exit(main())
