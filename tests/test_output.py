import json

import pandas as pd
import pytest

from permissions import OutputFormatter, export_analysis


def test_json_export(demo_analysis, tmp_path):
    path = export_analysis(demo_analysis, 'json', tmp_path / "reports")

    assert path.name == f"rbac_audit_{demo_analysis.analysis_id}.json"
    data = json.loads(path.read_text())
    assert data['statistics']['redundant_grants'] == 5
    assert len(data['grants']) == 21


def test_csv_export(demo_analysis, tmp_path):
    path = export_analysis(demo_analysis, 'csv', tmp_path)

    frame = pd.read_csv(path)
    assert len(frame) == 21
    assert frame['is_redundant'].sum() == 5
    assert "All 4 subscriptions" in set(frame['affected_subscriptions'])


def test_excel_export(demo_analysis, tmp_path):
    path = export_analysis(demo_analysis, 'excel', tmp_path)

    assert path.suffix == ".xlsx"
    sheets = pd.ExcelFile(path).sheet_names
    assert sheets == ['Summary', 'Principals', 'Grants', 'Redundant', 'Role Matrix']
    assert len(pd.read_excel(path, sheet_name='Redundant')) == 5


def test_principals_dataframe_orders_privileged_first(demo_analysis):
    frame = OutputFormatter.principals_dataframe(demo_analysis)
    assert len(frame) == 9
    assert frame['Privileged'].tolist() == sorted(frame['Privileged'].tolist(), reverse=True)


def test_print_summary(demo_analysis, capsys):
    OutputFormatter.print_summary(demo_analysis)
    out = capsys.readouterr().out
    assert "Redundant grants: 5" in out
    assert "Covered by Owner at Root (/)" in out


def test_unknown_format_rejected(demo_analysis, tmp_path):
    with pytest.raises(KeyError):
        export_analysis(demo_analysis, 'xml', tmp_path)


def test_print_summary_reports_unread_subscriptions(demo_analysis, capsys):
    partial = demo_analysis.model_copy(update={'failed_subscriptions': {"dead-sub": "Retired Subscription"}})
    OutputFormatter.print_summary(partial)
    assert "1 subscriptions could not be read: Retired Subscription" in capsys.readouterr().out
