"""
chrome-ranger - Benchmark matrix runner.

Run a command across Chrome versions x git refs, resume where you left off.
"""

from chrome_ranger.coordinator import RunCoordinator, RunOptions
from chrome_ranger.store import ResultStore

__version__ = "0.1.0"
__all__ = ["ResultStore", "RunCoordinator", "RunOptions", "__version__"]
