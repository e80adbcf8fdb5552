"""PaperDesk: search, cache and organize papers from arXiv and bioRxiv."""

__version__ = "0.1.0"
