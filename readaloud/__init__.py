"""Top-level package for readaloud.

This package turns written documents into spoken audio: it segments text into
speakable blocks, plays them back under interactive control through
`PlaybackController`, and exports chapter audio into one chaptered audiobook
through `AudiobookAssembler`.
"""

from .export.assembler import AudiobookAssembler
from .playback.controller import PlaybackController
from .text.segmenter import segment

__all__ = ["AudiobookAssembler", "PlaybackController", "segment", "__version__"]

__version__ = "0.1.0"
