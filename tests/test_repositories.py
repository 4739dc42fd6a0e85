from config import DatabaseConfig
from database import DatabaseManager


def test_save_and_load_analysis(repository, demo_analysis):
    assert repository.save_analysis(demo_analysis)

    loaded = repository.get_analysis(demo_analysis.analysis_id)
    assert loaded is not None
    assert loaded.analysis_id == demo_analysis.analysis_id
    assert loaded.statistics == demo_analysis.statistics
    assert len(loaded.grants) == 21
    assert loaded.get_principal("user-alice-001").redundant_count == 2


def test_saving_twice_replaces_run(repository, demo_analysis):
    repository.save_analysis(demo_analysis)
    repository.save_analysis(demo_analysis)

    assert len(repository.list_analyses()) == 1
    assert len(repository.get_redundant_grants(demo_analysis.analysis_id)) == 5


def test_grant_queries(repository, demo_analysis):
    repository.save_analysis(demo_analysis)

    bob = repository.get_principal_grants(demo_analysis.analysis_id, "user-bob-002")
    assert len(bob) == 3
    assert {g['principal_display_name'] for g in bob} == {"Bob Developer"}
    redundant = repository.get_redundant_grants(demo_analysis.analysis_id)
    assert all(g['is_redundant'] and g['redundant_reason'] for g in redundant)


def test_missing_analysis(repository):
    assert repository.get_analysis("nope") is None
    assert repository.get_redundant_grants("nope") == []


def test_list_filters_and_summary(repository, demo_analysis):
    repository.save_analysis(demo_analysis)
    other = demo_analysis.model_copy(update={'analysis_id': 'other-run', 'tenant_id': 'other-tenant'})
    repository.save_analysis(other)

    assert len(repository.list_analyses()) == 2
    assert [run['analysis_id'] for run in repository.list_analyses(tenant_id='other-tenant')] == ['other-run']
    assert len(repository.list_analyses(limit=1)) == 1

    summary = repository.get_summary()
    assert summary['total_runs'] == 2
    assert summary['unique_tenants'] == 2
    assert summary['total_redundant'] == 10


def test_delete_analysis(repository, demo_analysis):
    repository.save_analysis(demo_analysis)
    assert repository.delete_analysis(demo_analysis.analysis_id)
    assert repository.get_analysis(demo_analysis.analysis_id) is None
    assert repository.get_principal_grants(demo_analysis.analysis_id, "user-bob-002") == []


def test_delete_old_analyses(repository, demo_analysis):
    repository.save_analysis(demo_analysis)

    assert repository.delete_old_analyses(days_old=30) == 0
    # negative age puts the cutoff in the future
    assert repository.delete_old_analyses(days_old=-1) == 1
    assert repository.list_analyses() == []


def test_database_stats(tmp_path):
    manager = DatabaseManager(DatabaseConfig(database_path=str(tmp_path / "nested" / "stats.db")))
    stats = manager.get_database_stats()
    assert stats['analysis_runs_count'] == 0
    assert stats['role_grants_count'] == 0


def test_failed_subscriptions_survive_storage(repository, demo_analysis):
    partial = demo_analysis.model_copy(update={'failed_subscriptions': {"dead-sub": "Retired Subscription"}})
    repository.save_analysis(partial)
    assert repository.get_analysis(partial.analysis_id).failed_subscriptions == {"dead-sub": "Retired Subscription"}


def test_delete_old_analyses_uses_configured_retention(tmp_path, demo_analysis):
    from repositories import AnalysisRepository

    manager = DatabaseManager(DatabaseConfig(database_path=str(tmp_path / "retention.db"), data_retention_days=-1))
    repository = AnalysisRepository(manager)
    repository.save_analysis(demo_analysis)

    assert repository.delete_old_analyses() == 1
    assert repository.list_analyses() == []
