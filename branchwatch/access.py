"""
Access scope: which branches and incidents a caller may see, plus the
dashboard aggregates computed over that scope.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .models import Branch, BranchHealth, Incident, IncidentStatus, UserProfile, fold

ALL = "all"


def _unconstrained(value: Optional[str]) -> bool:
    return value is None or value == "" or value == ALL


class IncidentFilters(BaseModel):
    """Equality filters; None or "all" means no constraint."""
    category: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    region: Optional[str] = None
    brand: Optional[str] = None


def resolve(profile: UserProfile, all_branches: Sequence[Branch]) -> List[Branch]:
    """Superadmins see every branch; users see all_branches ∩ assigned_branches."""
    if profile.is_superadmin:
        return list(all_branches)
    return [b for b in all_branches if b.id in profile.assigned_branches]


def can_see_branch(profile: UserProfile, branch_id: str, all_branches: Sequence[Branch]) -> bool:
    return any(b.id == branch_id for b in resolve(profile, all_branches))


def sort_recent_first(incidents: Iterable[Incident]) -> List[Incident]:
    # sorted() is stable, so ties keep their insertion order
    return sorted(incidents, key=lambda i: i.created_at, reverse=True)


def filter_incidents(
    profile: UserProfile,
    incidents: Iterable[Incident],
    visible_branches: Sequence[Branch],
    filters: Optional[IncidentFilters] = None,
    branch_id: Optional[str] = None,
) -> List[Incident]:
    """
    Scope, filter and order incidents for one caller.

    A superadmin gets nothing until a specific branch is selected; a user gets
    every incident of their visible branches. Results are most recent first.
    """
    filters = filters or IncidentFilters()
    by_id: Dict[str, Branch] = {b.id: b for b in visible_branches}
    if not profile.is_superadmin:
        by_id = {k: v for k, v in by_id.items() if k in profile.assigned_branches}

    selected = None if _unconstrained(branch_id) else branch_id
    if profile.is_superadmin and selected is None:
        return []
    if selected is not None:
        if selected not in by_id:
            return []
        by_id = {selected: by_id[selected]}

    out: List[Incident] = []
    for inc in incidents:
        branch = by_id.get(inc.branch_id)
        if branch is None:
            continue
        if not _unconstrained(filters.category) and inc.category != filters.category:
            continue
        if not _unconstrained(filters.status) and inc.status.value != filters.status:
            continue
        if not _unconstrained(filters.priority) and inc.priority.value != filters.priority:
            continue
        if not _unconstrained(filters.region) and branch.region != filters.region:
            continue
        if not _unconstrained(filters.brand) and branch.brand != filters.brand:
            continue
        out.append(inc)
    return sort_recent_first(out)


def branch_health(incidents: Iterable[Incident]) -> BranchHealth:
    """error if anything is Open, warning if anything is InProgress, else ok."""
    statuses = {i.status for i in incidents}
    if IncidentStatus.OPEN in statuses:
        return BranchHealth.ERROR
    if IncidentStatus.IN_PROGRESS in statuses:
        return BranchHealth.WARNING
    return BranchHealth.OK


def filter_branches(
    branches: Iterable[Branch],
    brand: Optional[str] = None,
    region: Optional[str] = None,
) -> List[Branch]:
    return [
        b for b in branches
        if (_unconstrained(brand) or b.brand == brand) and (_unconstrained(region) or b.region == region)
    ]


def search_branches(branches: Iterable[Branch], term: str) -> List[Branch]:
    """Accent- and case-insensitive substring search on branch names."""
    needle = fold(term or "")
    if not needle:
        return list(branches)
    return [b for b in branches if needle in fold(b.name)]


class BranchStatus(BaseModel):
    branch: Branch
    health: BranchHealth


class DashboardSummary(BaseModel):
    critical: int = 0
    warning: int = 0
    operational: int = 0
    total_branches: int = 0
    brands: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    branches: List[BranchStatus] = Field(default_factory=list)


def dashboard_summary(
    branches: Sequence[Branch],
    incidents: Iterable[Incident],
    health_filter: Optional[str] = None,
) -> DashboardSummary:
    """
    Per-branch health over the given (already scoped) branches and incidents.
    Counts always cover every branch; `health_filter` only narrows the listed ones.
    """
    per_branch: Dict[str, List[Incident]] = {b.id: [] for b in branches}
    for inc in incidents:
        if inc.branch_id in per_branch:
            per_branch[inc.branch_id].append(inc)

    summary = DashboardSummary(total_branches=len(branches))
    for b in branches:
        health = branch_health(per_branch[b.id])
        if health == BranchHealth.ERROR:
            summary.critical += 1
        elif health == BranchHealth.WARNING:
            summary.warning += 1
        else:
            summary.operational += 1
        if _unconstrained(health_filter) or health.value == health_filter:
            summary.branches.append(BranchStatus(branch=b, health=health))
        if b.brand and b.brand not in summary.brands:
            summary.brands.append(b.brand)
        if b.region and b.region not in summary.regions:
            summary.regions.append(b.region)
    return summary
