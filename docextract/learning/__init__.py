from docextract.learning.learner import PatternLearner, corpus_match_rate
from docextract.learning.pattern_builder import PatternCandidate, build_pattern, infer_value_shape
from docextract.learning.pattern_store import PatternStore, rank_patterns

__all__ = [
    'PatternLearner', 'corpus_match_rate',
    'PatternCandidate', 'build_pattern', 'infer_value_shape',
    'PatternStore', 'rank_patterns',
]
