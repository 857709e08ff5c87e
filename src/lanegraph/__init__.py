"""lanegraph - commit graph rendering for terminal inline-image protocols.

lanegraph lays a commit history out into lanes, rasterizes the lanes into
images and frames them for the iTerm2 and kitty terminal image protocols.
"""

__version__ = "0.1.0"
__author__ = "lanegraph contributors"
__description__ = "Commit graph images for your terminal"

from lanegraph.config import LanegraphConfig

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    "LanegraphConfig",
]
