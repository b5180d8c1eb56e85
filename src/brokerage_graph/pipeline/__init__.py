"""
Brokerage pipeline components: scoring, matching, offers, deals and the
transaction graph resolver, listing lifecycle.
"""

from .deals import DealBuilder
from .graph import TimelineEvent, TransactionGraph, TransactionGraphResolver
from .lifecycle import CycleLifecycle
from .matcher import MatchingEngine, MatchingRunResult
from .offers import AcceptanceResult, CycleOffer, OfferPipeline
from .scorer import WEIGHTS, MatchEvaluation, MatchScorer

__all__ = [
    'AcceptanceResult',
    'CycleLifecycle',
    'CycleOffer',
    'DealBuilder',
    'MatchEvaluation',
    'MatchScorer',
    'MatchingEngine',
    'MatchingRunResult',
    'OfferPipeline',
    'TimelineEvent',
    'TransactionGraph',
    'TransactionGraphResolver',
    'WEIGHTS',
]
