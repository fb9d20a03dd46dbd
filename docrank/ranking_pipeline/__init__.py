"""
Ranking pipeline for docrank.
Lexical retrieval, semantic scoring, LLM re-ranking and score fusion.
"""

from .lexical_search import LexicalSearchStage, term_frequency
from .semantic_scorer import SemanticScorer
from .reranker import RelevanceReranker, term_density_score
from .score_fusion import ScoreFusionEngine
from .orchestrator import RankingOrchestrator, create_ranking_orchestrator

__all__ = [
    "LexicalSearchStage",
    "term_frequency",
    "SemanticScorer",
    "RelevanceReranker",
    "term_density_score",
    "ScoreFusionEngine",
    "RankingOrchestrator",
    "create_ranking_orchestrator"
]
