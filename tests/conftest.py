# Tests import `cafe_printer` and the root-level `app` module from a source checkout,
# with or without `pip install -e .`.

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))
