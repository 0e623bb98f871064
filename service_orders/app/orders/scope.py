"""
Tenant scope resolution for the Orders Service.

A scope is the set of branches a caller may act on for one request. This module
is the only place where role policy turns into a branch set; the cache and store
layers see nothing but the resolved set.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

from shared.errors import ForbiddenError
from shared.logging import get_logger

SCOPE_DELIMITER = ","


class CallerRole(str, Enum):
    """Roles issued by the auth layer."""
    OWNER = "owner"
    MANAGER = "manager"
    SALESMAN = "salesman"
    ADMIN = "admin"
    DEMO = "demo"


class OwnerScopePolicy(str, Enum):
    """Which branches an owner sees. Product has not settled this yet."""
    OWN_BRANCHES = "own_branches"
    ALL_BRANCHES = "all_branches"


@dataclass(frozen=True)
class TenantScope:
    """Immutable set of branch ids with a canonical string form."""
    branch_ids: FrozenSet[str]

    def __post_init__(self):
        if not self.branch_ids:
            raise ForbiddenError("Caller has no branch scope")

    @classmethod
    def of(cls, branch_ids: Iterable[str]) -> "TenantScope":
        cleaned = frozenset(str(b).strip() for b in branch_ids if b is not None and str(b).strip())
        return cls(cleaned)

    def render(self) -> str:
        """Sorted, comma-joined branch ids; identical for equal sets."""
        return SCOPE_DELIMITER.join(sorted(self.branch_ids))

    def covers(self, branch_id: str) -> bool:
        return branch_id in self.branch_ids

    def sorted_branches(self):
        return sorted(self.branch_ids)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller as handed over by the auth layer."""
    user_id: Optional[str]
    branch_ids: FrozenSet[str] = field(default_factory=frozenset)
    role: Optional[str] = None


class ScopeResolver:
    """Derive the effective branch scope of a caller."""

    def __init__(self,
                 owner_policy: OwnerScopePolicy = OwnerScopePolicy.OWN_BRANCHES,
                 branch_directory: Optional[Callable[[], Iterable[str]]] = None):
        if owner_policy == OwnerScopePolicy.ALL_BRANCHES and branch_directory is None:
            raise ValueError("all_branches owner policy needs a branch directory")
        self.owner_policy = OwnerScopePolicy(owner_policy)
        self.branch_directory = branch_directory
        self.logger = get_logger("orders.scope")

    def resolve(self, auth: AuthContext) -> TenantScope:
        """Return the caller's scope; raises ForbiddenError when it is empty."""
        branch_ids = set(auth.branch_ids)

        if auth.role == CallerRole.OWNER.value and self.owner_policy == OwnerScopePolicy.ALL_BRANCHES:
            branch_ids.update(self.branch_directory())

        if not branch_ids:
            self.logger.warning("Caller has no branches", user_id=auth.user_id, role=auth.role)
            raise ForbiddenError("Caller has no branch scope", details={"user_id": auth.user_id})

        return TenantScope.of(branch_ids)
