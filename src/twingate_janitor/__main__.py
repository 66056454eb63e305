"""!
@brief Allow ``python -m twingate_janitor``.
"""

import sys

from .main import main

if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
