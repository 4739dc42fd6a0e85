import logging

from analysis import Aggregator, Deduplicator, RedundancyAnalyzer, run_analysis
from config import AnalysisConfig
from hierarchy import build_hierarchy
from models import Principal, PrincipalType, RawSubscriptionMgChain

from conftest import CORP, RG1, ROOT, S1, make_raw

SUBSCRIPTIONS = {"S1": "Sub One", "S2": "Sub Two", "S3": "Sub Three"}


def test_deduplicate_merges_observations():
    raw = [make_raw("p1", "Reader", ROOT, sub_id, name) for sub_id, name in SUBSCRIPTIONS.items()]
    grants = Deduplicator().deduplicate(raw)

    assert len(grants) == 1
    assert grants[0].visible_from_subscriptions == ["Sub One", "Sub Two", "Sub Three"]
    assert grants[0].display_subscriptions(SUBSCRIPTIONS) == ["All 3 subscriptions"]
    assert grants[0].display_subscriptions({"S1": "a", "S2": "b", "S3": "c", "S4": "d"}) == [
        "Sub One", "Sub Three", "Sub Two"]


def test_deduplicate_keeps_first_seen_order_and_details():
    first = make_raw("p1", "Reader", S1, "S1")
    first.description = "first"
    second = make_raw("p1", "Reader", S1, "S1")
    second.description = "second"
    other = make_raw("p2", "Reader", S1, "S1")
    grants = Deduplicator().deduplicate([first, other, second])

    assert [g.principal_id for g in grants] == ["p1", "p2"]
    assert grants[0].description == "first"
    assert grants[0].visible_from == {"S1": "S1 name"}


def test_same_role_different_definition_ids_stay_separate():
    a = make_raw("p1", "Reader", S1, role_definition_id="/roleDefinitions/a")
    b = make_raw("p1", "Reader", S1, role_definition_id="/roleDefinitions/b")
    assert len(Deduplicator().deduplicate([a, b])) == 2


def analyze(raw, chains=None, subscriptions=None, dominator_selection="first"):
    hierarchy = build_hierarchy(chains or [], {"Corp": "Corp"})
    grants = Deduplicator().deduplicate(raw)
    analyzer = RedundancyAnalyzer(hierarchy, subscriptions or {"S1": "Sub One"}, dominator_selection)
    count = analyzer.analyze(grants)
    return grants, count


def test_owner_at_subscription_covers_contributor_at_resource_group(chains):
    grants, count = analyze([make_raw("p1", "Owner", S1), make_raw("p1", "Contributor", RG1)], chains)

    owner, contributor = grants
    assert count == 1
    assert not owner.is_redundant
    assert contributor.is_redundant
    assert contributor.redundant_reason == "Covered by Owner at Subscription 'Sub One'"


def test_same_role_inherited_from_management_group(chains):
    grants, _ = analyze([make_raw("p1", "Reader", CORP), make_raw("p1", "Reader", S1)], chains)

    assert not grants[0].is_redundant
    assert grants[1].is_redundant
    assert "Same role" in grants[1].redundant_reason
    assert "Management Group 'Corp'" in grants[1].redundant_reason


def test_management_group_grant_ignored_without_hierarchy():
    grants, count = analyze([make_raw("p1", "Owner", CORP), make_raw("p1", "Reader", S1)])
    assert count == 0


def test_grants_of_different_principals_never_dominate(chains):
    grants, count = analyze([make_raw("p1", "Owner", S1), make_raw("p2", "Reader", RG1)], chains)
    assert count == 0


def test_lower_role_does_not_cover_higher_role(chains):
    grants, count = analyze([make_raw("p1", "Reader", S1), make_raw("p1", "Owner", RG1)], chains)
    assert count == 0


def test_incomparable_roles_are_kept(chains):
    grants, count = analyze([make_raw("p1", "Contributor", S1), make_raw("p1", "Network Contributor", RG1)],
                            chains)
    assert count == 0


def test_covered_at_same_scope():
    grants, count = analyze([make_raw("p1", "Owner", RG1), make_raw("p1", "Contributor", RG1)])
    assert count == 1
    assert grants[1].redundant_reason == "Covered by Owner at same scope"


def test_unknown_scopes_are_never_redundant():
    grants, count = analyze([make_raw("p1", "Owner", "bogus"), make_raw("p1", "Reader", "bogus")])
    assert count == 0


def test_dominator_selection(chains):
    raw = [make_raw("p1", "Owner", S1), make_raw("p1", "Owner", CORP), make_raw("p1", "Contributor", RG1)]

    first, _ = analyze(raw, chains)
    assert first[2].redundant_reason == "Covered by Owner at Subscription 'Sub One'"

    broadest, _ = analyze(raw, chains, dominator_selection="broadest")
    assert broadest[2].redundant_reason == "Covered by Owner at Management Group 'Corp'"
    assert broadest[0].redundant_reason == "Same role (Owner) already granted at Management Group 'Corp'"


def test_run_analysis_end_to_end():
    raw = [make_raw("p1", "Owner", ROOT, sub_id, name) for sub_id, name in SUBSCRIPTIONS.items()]
    raw.append(make_raw("p1", "Contributor", "/subscriptions/S2", "S2", "Sub Two"))
    raw.append(make_raw("p1", "Reader", "/subscriptions/S2/resourceGroups/RG", "S2", "Sub Two"))
    principals = {"p1": Principal(id="p1", display_name="Alice", type=PrincipalType.USER, is_resolved=True)}

    analysis = run_analysis(raw, [], principals=principals, subscriptions=SUBSCRIPTIONS,
                            tenant_id="t1", analysis_id="run-1")

    assert analysis.analysis_id == "run-1"
    assert len(analysis.grants) == 3
    assert [g.is_redundant for g in analysis.grants] == [False, True, True]
    assert analysis.grants[1].redundant_reason == "Covered by Owner at Root (/)"
    assert analysis.grants[0].affected_subscriptions == ["All 3 subscriptions"]

    summary = analysis.get_principal("p1")
    assert summary.display_name == "Alice"
    assert summary.assignment_count == 3
    assert summary.redundant_count == 2
    assert summary.has_privileged_roles
    assert summary.roles == ["Contributor", "Owner", "Reader"]
    assert summary.affected_subscriptions == ["All 3 subscriptions"]
    assert analysis.statistics.redundant_grants == 2
    assert len(analysis.redundant_grants) == 2


def test_generated_analysis_id_uses_tenant():
    analysis = run_analysis([], [], tenant_id="t1")
    assert analysis.analysis_id.startswith("t1_")
    assert analysis.statistics.total_grants == 0
    assert not analysis.statistics.lacks_identity_directory_access


def test_unresolved_principal_fallback():
    analysis = run_analysis([make_raw("ghost", "Reader", S1, principal_type="ServicePrincipal")], [])
    summary = analysis.principals[0]
    assert summary.display_name == "ghost"
    assert summary.principal_type == "ServicePrincipal"
    assert not summary.is_resolved
    assert not summary.is_orphaned


def test_mark_unresolved_as_orphaned():
    config = AnalysisConfig(mark_unresolved_as_orphaned=True)
    analysis = run_analysis([make_raw("ghost", "Reader", S1)], [], config=config)
    assert analysis.principals[0].is_orphaned
    assert analysis.statistics.orphaned_principals == 1


def test_lacks_identity_directory_access(caplog):
    raw = [make_raw(f"p{i}", "Reader", S1) for i in range(3)]
    principals = {"p0": Principal(id="p0", display_name="Zed", is_resolved=True)}

    with caplog.at_level(logging.WARNING):
        analysis = run_analysis(raw, [], principals=principals)

    assert analysis.statistics.resolved_principal_fraction == round(1 / 3, 4)
    assert analysis.statistics.lacks_identity_directory_access
    assert "identity directory access" in caplog.text


def test_principal_ordering_privileged_first():
    raw = [make_raw("p1", "Reader", S1), make_raw("p2", "Owner", S1), make_raw("p3", "Reader", S1)]
    principals = {
        "p1": Principal(id="p1", display_name="bravo", is_resolved=True),
        "p2": Principal(id="p2", display_name="Zulu", is_resolved=True),
        "p3": Principal(id="p3", display_name="Alpha", is_resolved=True),
    }
    analysis = run_analysis(raw, [], principals=principals)
    assert [p.display_name for p in analysis.principals] == ["Zulu", "Alpha", "bravo"]


def test_statistics_and_role_scope_matrix(chains):
    raw = [
        make_raw("p1", "Owner", CORP),
        make_raw("p1", "Reader", S1),
        make_raw("p2", "Reader", RG1),
        make_raw("p3", "Network Contributor", S1),
    ]
    grants = Deduplicator().deduplicate(raw)
    hierarchy = build_hierarchy(chains)
    aggregator = Aggregator(grants, {}, {"S1": "Sub One"}, hierarchy, AnalysisConfig(matrix_top_roles=2))
    stats = aggregator.statistics(aggregator.principal_summaries())

    assert stats.total_grants == 4
    assert stats.total_principals == 3
    assert stats.by_access_tier == {"Privileged": 1, "Write": 1, "Read": 2}
    assert stats.by_scope_type == {"ManagementGroup": 1, "Subscription": 2, "ResourceGroup": 1}
    assert stats.privileged_principals == 1
    assert list(stats.role_scope_matrix) == ["Reader", "Network Contributor"]
    assert stats.role_scope_matrix["Reader"]["Subscription"] == 1
    assert stats.role_scope_matrix["Reader"]["ResourceGroup"] == 1
    assert stats.role_scope_matrix["Reader"]["Root"] == 0
    assert "Unknown" not in stats.role_scope_matrix["Reader"]


def test_failed_subscriptions_are_reported_not_scanned():
    raw = [make_raw("p1", "Reader", ROOT, "S1", "Sub One"), make_raw("p1", "Reader", ROOT, "S2", "Sub Two")]

    analysis = run_analysis(raw, [], subscriptions=SUBSCRIPTIONS, failed_subscriptions={"S3": "Sub Three"})

    assert analysis.subscriptions == {"S1": "Sub One", "S2": "Sub Two"}
    assert analysis.failed_subscriptions == {"S3": "Sub Three"}
    assert analysis.grants[0].affected_subscriptions == ["All 2 subscriptions"]
