import pytest
from fastapi.testclient import TestClient

from main import app, get_analysis_repo


@pytest.fixture
def client(repository):
    app.dependency_overrides[get_analysis_repo] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def stored_id(repository, demo_analysis):
    repository.save_analysis(demo_analysis)
    return demo_analysis.analysis_id


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_list_analyses(client, stored_id):
    runs = client.get("/api/analyses").json()["analyses"]
    assert [run["analysis_id"] for run in runs] == [stored_id]
    assert runs[0]["redundant_count"] == 5


def test_get_analysis(client, stored_id):
    response = client.get(f"/api/analyses/{stored_id}")
    assert response.status_code == 200
    assert response.json()["statistics"]["total_grants"] == 21


def test_unknown_analysis_is_404(client):
    assert client.get("/api/analyses/missing").status_code == 404
    assert client.get("/api/analyses/missing/statistics").status_code == 404
    assert client.delete("/api/analyses/missing").status_code == 404


def test_principals_filter(client, stored_id):
    everyone = client.get(f"/api/analyses/{stored_id}/principals").json()["principals"]
    privileged = client.get(f"/api/analyses/{stored_id}/principals",
                            params={"privileged_only": "true"}).json()["principals"]
    assert len(everyone) == 9
    assert len(privileged) == 6
    assert all(p["has_privileged_roles"] for p in privileged)


def test_redundant_and_statistics(client, stored_id):
    redundant = client.get(f"/api/analyses/{stored_id}/redundant").json()["redundant_grants"]
    assert len(redundant) == 5
    stats = client.get(f"/api/analyses/{stored_id}/statistics").json()
    assert stats["external_principals"] == 1


def test_delete_analysis(client, stored_id):
    assert client.delete(f"/api/analyses/{stored_id}").json()["status"] == "success"
    assert client.get(f"/api/analyses/{stored_id}").status_code == 404


def test_run_demo_analysis(client, repository):
    body = client.post("/api/analyses/demo").json()
    assert body["status"] == "success"
    assert body["redundant_grants"] == 5
    assert repository.get_analysis(body["analysis_id"]) is not None
