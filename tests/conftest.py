import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
