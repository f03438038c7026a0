"""
Routing rule resolution: matching, configuration and caching.
"""

from .rule_cache import CachedRuleStore
from .rule_config import RuleConfigBuilder, RuleConfigLoader
from .rule_matcher import CRITERION_PREDICATES, RuleMatcher

__all__ = [
    "CachedRuleStore",
    "RuleConfigBuilder",
    "RuleConfigLoader",
    "CRITERION_PREDICATES",
    "RuleMatcher",
]
