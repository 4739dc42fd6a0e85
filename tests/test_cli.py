import json
import logging

import pytest
from click.testing import CliRunner

from permissions import AzureAuthManager, main


@pytest.fixture(autouse=True)
def restore_root_handlers():
    handlers, level = logging.root.handlers[:], logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)


def test_demo_run_writes_report(tmp_path):
    result = CliRunner().invoke(main, ['--demo', '--output-dir', str(tmp_path), '--output-format', 'json'])

    assert result.exit_code == 0, result.output
    reports = list(tmp_path.glob("rbac_audit_*.json"))
    assert len(reports) == 1
    assert json.loads(reports[0].read_text())['statistics']['redundant_grants'] == 5
    assert "Report written to" in result.output


def test_demo_run_with_broadest_dominator(tmp_path):
    result = CliRunner().invoke(main, ['--demo', '--dominator', 'broadest', '--output-dir', str(tmp_path)])
    assert result.exit_code == 0, result.output


def test_partial_service_principal_credentials_rejected():
    result = CliRunner().invoke(main, ['--tenant-id', 't', '--client-id', 'c'], env={'AZURE_CLIENT_SECRET': ''})
    assert result.exit_code != 0
    assert "client" in result.output.lower()


def test_auth_manager_requires_complete_credentials():
    with pytest.raises(ValueError):
        AzureAuthManager(tenant_id="t", client_id="c")


def test_save_to_db_stores_and_keeps_recent_runs(tmp_path, monkeypatch, repository):
    monkeypatch.setattr("repositories._analysis_repo", repository)

    result = CliRunner().invoke(main, ['--demo', '--save-to-db', '--output-dir', str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "stored in database" in result.output
    assert "Removed" not in result.output
    assert len(repository.list_analyses()) == 1
