"""Query ranking."""

from history_sync.search.ranking import rank, score, tokenize

__all__ = ["rank", "score", "tokenize"]
