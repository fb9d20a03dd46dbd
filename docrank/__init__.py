"""
docrank - hybrid document relevance ranking.
Fuses lexical, semantic and language-model signals over a MongoDB document store.
"""

__version__ = "1.0.0"
