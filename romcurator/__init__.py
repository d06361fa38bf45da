"""romcurator package root.

Candidate generation, post-processing and writing for DAT-driven ROM
collections. Keep this file small and explicit to make `import romcurator`
lightweight.
"""

from . import config

__version__ = "0.1.0"

__all__ = [
    "config",
    "__version__",
]
