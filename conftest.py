import sys
from pathlib import Path

# Get the project root directory
project_root = Path(__file__).parent.absolute()

# Add project root to Python path so tests import `persongroup` and `scripts` without an install
sys.path.insert(0, str(project_root))
