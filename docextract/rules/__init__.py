from docextract.rules.rule_engine import RuleEngine

__all__ = ['RuleEngine']
