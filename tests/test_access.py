import random
from datetime import datetime, timedelta, timezone

from branchwatch.access import (
    IncidentFilters,
    branch_health,
    can_see_branch,
    dashboard_summary,
    filter_branches,
    filter_incidents,
    resolve,
    search_branches,
    sort_recent_first,
)
from branchwatch.models import Branch, BranchHealth, Incident, IncidentStatus, Priority, Role, UserProfile, fold

BRANCHES = [
    Branch(id="b1", name="KFC Xalapa 1", region="Xalapa", brand="KFC"),
    Branch(id="b2", name="Dairy Queen Villa Magna", region="San Luis", brand="DQ"),
    Branch(id="b3", name="KFC Mérida 1", region="Merida", brand="KFC"),
    Branch(id="b4", name="DQ Merida 1", region="Merida", brand="DQ"),
]

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _incident(i, branch_id, minutes=0, status=IncidentStatus.OPEN, priority=Priority.LOW, category="Otro"):
    return Incident(
        id=f"i{i}",
        branch_id=branch_id,
        title=f"incident {i}",
        category=category,
        priority=priority,
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


def test_superadmin_sees_every_branch(superadmin):
    assert resolve(superadmin, BRANCHES) == BRANCHES


def test_user_scope_is_intersection_of_assignment():
    rng = random.Random(1234)
    ids = [b.id for b in BRANCHES] + ["ghost-1", "ghost-2"]
    for _ in range(200):
        assigned = set(rng.sample(ids, rng.randint(0, len(ids))))
        profile = UserProfile(id="u", role=Role.USER, assigned_branches=assigned)
        visible = {b.id for b in resolve(profile, BRANCHES)}
        assert visible == {b.id for b in BRANCHES} & assigned


def test_user_without_assignment_sees_nothing():
    profile = UserProfile(id="u", role=Role.USER)
    assert resolve(profile, BRANCHES) == []
    assert not can_see_branch(profile, "b1", BRANCHES)


def test_user_sees_only_assigned_incidents(user):
    items = [_incident(1, "b1"), _incident(2, "b2"), _incident(3, "b1", minutes=5)]
    visible = resolve(user, BRANCHES)
    result = filter_incidents(user, items, visible)
    assert [i.id for i in result] == ["i3", "i1"]


def test_superadmin_must_select_a_branch(superadmin):
    items = [_incident(1, "b1"), _incident(2, "b2")]
    assert filter_incidents(superadmin, items, BRANCHES) == []
    assert filter_incidents(superadmin, items, BRANCHES, branch_id="all") == []
    assert [i.id for i in filter_incidents(superadmin, items, BRANCHES, branch_id="b2")] == ["i2"]


def test_user_cannot_select_foreign_branch(user):
    items = [_incident(1, "b1"), _incident(2, "b2")]
    assert filter_incidents(user, items, BRANCHES, branch_id="b2") == []


def test_equality_filters(user):
    profile = user.model_copy(update={"assigned_branches": {"b1", "b3"}})
    items = [
        _incident(1, "b1", status=IncidentStatus.OPEN, priority=Priority.HIGH, category="Drive-Thru"),
        _incident(2, "b1", status=IncidentStatus.RESOLVED, priority=Priority.HIGH, category="Otro"),
        _incident(3, "b3", status=IncidentStatus.OPEN, priority=Priority.LOW, category="Otro"),
    ]
    visible = resolve(profile, BRANCHES)

    def ids(**kw):
        return [i.id for i in filter_incidents(profile, items, visible, IncidentFilters(**kw))]

    assert ids(status="Open") == ["i1", "i3"]
    assert ids(priority="High", status="Resolved") == ["i2"]
    assert ids(category="Drive-Thru") == ["i1"]
    assert ids(region="Merida") == ["i3"]
    assert ids(brand="DQ") == []
    assert len(ids(category="all", status="all")) == 3


def test_ordering_is_stable_for_equal_timestamps():
    items = [_incident(1, "b1"), _incident(2, "b1"), _incident(3, "b1", minutes=1), _incident(4, "b1")]
    assert [i.id for i in sort_recent_first(items)] == ["i3", "i1", "i2", "i4"]


def test_branch_health():
    assert branch_health([]) == BranchHealth.OK
    assert branch_health([_incident(1, "b1", status=IncidentStatus.RESOLVED)]) == BranchHealth.OK
    assert branch_health([_incident(1, "b1", status=IncidentStatus.IN_PROGRESS)]) == BranchHealth.WARNING
    assert branch_health([
        _incident(1, "b1", status=IncidentStatus.IN_PROGRESS),
        _incident(2, "b1", status=IncidentStatus.OPEN),
    ]) == BranchHealth.ERROR


def test_branch_filters_and_search():
    assert [b.id for b in filter_branches(BRANCHES, brand="KFC")] == ["b1", "b3"]
    assert [b.id for b in filter_branches(BRANCHES, brand="DQ", region="Merida")] == ["b4"]
    assert len(filter_branches(BRANCHES, brand="all", region=None)) == 4
    assert [b.id for b in search_branches(BRANCHES, "merida")] == ["b3", "b4"]
    assert len(search_branches(BRANCHES, "")) == 4


def test_fold_ignores_accents_and_case():
    assert fold("  Área de CLIENTE ") == "area de cliente"
    assert fold(None) == ""


def test_dashboard_summary_counts():
    items = [
        _incident(1, "b1", status=IncidentStatus.OPEN),
        _incident(2, "b2", status=IncidentStatus.IN_PROGRESS),
        _incident(3, "b3", status=IncidentStatus.RESOLVED),
    ]
    summary = dashboard_summary(BRANCHES, items)
    assert (summary.critical, summary.warning, summary.operational) == (1, 1, 2)
    assert summary.total_branches == 4
    assert summary.brands == ["KFC", "DQ"]
    assert summary.regions == ["Xalapa", "San Luis", "Merida"]

    only_errors = dashboard_summary(BRANCHES, items, health_filter="error")
    assert [s.branch.id for s in only_errors.branches] == ["b1"]
    assert only_errors.critical == 1 and only_errors.operational == 2
