"""
Resolves the reviewers authorized by a rule's roles.
"""

from claim_routing.core.models import User
from claim_routing.core.ports import UserDirectory
from claim_routing.observability.logger import get_logger

logger = get_logger(__name__)


class RoleResolver:
    """
    Maps role ids to the users currently eligible to receive work.

    The user-to-role binding is global: users are not filtered by the
    company that owns the rule, so a rule can escalate to reviewers
    registered against another company.
    """

    def __init__(self, directory: UserDirectory):
        self.directory = directory

    def users_for(self, role_ids: list[int]) -> list[User]:
        """
        Active, non-archived users holding any of the roles.

        Args:
            role_ids: Roles authorized by the winning rule

        Returns:
            Users deduplicated and ordered by id
        """
        if not role_ids:
            return []

        eligible: dict[int, User] = {}
        for user in self.directory.users_with_roles(list(dict.fromkeys(role_ids))):
            if user.is_eligible:
                eligible.setdefault(user.id, user)

        users = [eligible[user_id] for user_id in sorted(eligible)]
        logger.debug(f"Roles {role_ids} resolved to users {[u.id for u in users]}")
        return users
