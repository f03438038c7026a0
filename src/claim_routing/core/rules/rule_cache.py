"""
Read-through cache for company rule sets.

Rule sets are read on every claim and written rarely. Entries expire after
a short TTL, are dropped on every rule write that goes through the cache,
and (by default) are checked against the store's rules revision so a write
made by another process is never hidden behind a cached, less specific
rule set.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

from claim_routing.core.models import Company, Rule
from claim_routing.core.ports import RuleStore
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import increment_counter, rule_cache_requests_total

logger = get_logger(__name__)


@dataclass
class _CacheEntry:
    rules: list[Rule]
    revision: int
    loaded_at: float


class CachedRuleStore(RuleStore):
    """RuleStore decorator caching ``list_rules`` per company."""

    def __init__(
        self,
        inner: RuleStore,
        ttl_seconds: float = 30.0,
        validate_revision: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            inner: Backing store
            ttl_seconds: Maximum age of a cached rule set
            validate_revision: Compare the cached revision with the store on every hit
            clock: Monotonic time source
        """
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.validate_revision = validate_revision
        self._clock = clock
        self._entries: dict[int, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get_company(self, company_id: int) -> Company | None:
        return self.inner.get_company(company_id)

    def find_company_by_nit(self, nit: str) -> Company | None:
        return self.inner.find_company_by_nit(nit)

    def rules_revision(self, company_id: int) -> int:
        return self.inner.rules_revision(company_id)

    def list_rules(self, company_id: int) -> list[Rule]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(company_id)

        if entry is not None and now - entry.loaded_at < self.ttl_seconds:
            if not self.validate_revision or self.inner.rules_revision(company_id) == entry.revision:
                increment_counter(rule_cache_requests_total, result="hit")
                return list(entry.rules)
            increment_counter(rule_cache_requests_total, result="stale")
            logger.info(f"Rule cache stale for company {company_id}, reloading")
        else:
            increment_counter(rule_cache_requests_total, result="miss")

        # Read the revision first so a concurrent write forces the next reload
        revision = self.inner.rules_revision(company_id)
        rules = self.inner.list_rules(company_id)
        with self._lock:
            self._entries[company_id] = _CacheEntry(rules=rules, revision=revision, loaded_at=now)
        return list(rules)

    def save_rule(self, rule: Rule) -> Rule:
        saved = self.inner.save_rule(rule)
        self.invalidate(saved.company_id)
        return saved

    def set_rule_active(self, rule_id: int, is_active: bool) -> Rule:
        updated = self.inner.set_rule_active(rule_id, is_active)
        self.invalidate(updated.company_id)
        return updated

    def invalidate(self, company_id: int | None = None) -> None:
        """
        Drop cached rule sets.

        Args:
            company_id: Company to drop, or None to clear everything
        """
        with self._lock:
            if company_id is None:
                self._entries.clear()
            else:
                self._entries.pop(company_id, None)
        logger.debug(f"Rule cache invalidated: company_id={company_id}")
