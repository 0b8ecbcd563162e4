"""API tests against a temporary SQLite database."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from holdback import app as app_module
from holdback.app import app
from holdback.config import settings
from holdback.intranet import parse_project

PIN = "2468"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setattr(settings, "DASHBOARD_PIN", PIN)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def headers():
    return {"X-Dashboard-Pin": PIN}


class TestPinGate:
    def test_missing_pin_is_rejected(self, client):
        assert client.get("/api/tables/QuotedProjects").status_code == 401

    def test_wrong_pin_is_rejected(self, client):
        response = client.get("/api/tables/QuotedProjects", headers={"X-Dashboard-Pin": "0000"})
        assert response.status_code == 401
        assert client.post("/api/pin", json={"pin": "0000"}).status_code == 401

    def test_pin_cookie_opens_the_api(self, client):
        response = client.post("/api/pin", json={"pin": PIN})
        assert response.status_code == 200
        assert client.get("/api/tables/QuotedProjects").status_code == 200

    def test_health_needs_no_pin(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestTables:
    def test_insert_select_update_delete(self, client, headers):
        response = client.post("/api/tables/QuotedProjects", headers=headers,
                               json={"name": "Annex", "closing_date": "2030-02-01"})
        assert response.status_code == 200
        project = response.json()["rows"][0]
        assert project["id"] == 1

        response = client.patch(f"/api/tables/QuotedProjects/{project['id']}", headers=headers,
                                json={"location": "Yard 2"})
        assert response.status_code == 200
        assert response.json()["location"] == "Yard 2"

        rows = client.get("/api/tables/QuotedProjects", headers=headers,
                          params={"location": "Yard 2"}).json()["rows"]
        assert [row["name"] for row in rows] == ["Annex"]

        response = client.delete(f"/api/tables/QuotedProjects/{project['id']}", headers=headers)
        assert response.status_code == 200
        assert client.get("/api/tables/QuotedProjects", headers=headers).json()["rows"] == []

    def test_bulk_insert_and_ordering(self, client, headers):
        category = client.post("/api/tables/Categories", headers=headers,
                               json={"header": "Site", "type": "inspection"}).json()["rows"][0]
        client.post("/api/tables/ColumnDefinitions", headers=headers, json=[
            {"category_id": category["id"], "column_name": "B", "column_order": 2},
            {"category_id": category["id"], "column_name": "A", "column_order": 1},
        ])

        rows = client.get("/api/tables/ColumnDefinitions", headers=headers,
                          params={"category_id": category["id"], "order_by": "column_order"}).json()["rows"]
        assert [row["column_name"] for row in rows] == ["A", "B"]

        rows = client.get("/api/tables/ColumnDefinitions", headers=headers,
                          params={"order_by": "column_order", "desc": "true", "limit": 1}).json()["rows"]
        assert [row["column_name"] for row in rows] == ["B"]

    def test_text_filters_keep_leading_zeros(self, client, headers):
        client.post("/api/tables/QuotedProjects", headers=headers, json={"quotation_ref": "0042", "name": "Annex"})

        rows = client.get("/api/tables/QuotedProjects", headers=headers,
                          params={"quotation_ref": "0042"}).json()["rows"]
        assert [row["name"] for row in rows] == ["Annex"]

    def test_non_numeric_id_filter_is_400(self, client, headers):
        response = client.get("/api/tables/CategoryData", headers=headers, params={"category_id": "abc"})
        assert response.status_code == 400

    def test_unknown_table_is_404(self, client, headers):
        assert client.get("/api/tables/Nope", headers=headers).status_code == 404
        assert client.delete("/api/tables/Nope/1", headers=headers).status_code == 404

    def test_unknown_column_is_400(self, client, headers):
        response = client.post("/api/tables/equipmentType", headers=headers, json={"colour": "red"})
        assert response.status_code == 400

    def test_missing_record_is_404(self, client, headers):
        assert client.patch("/api/tables/equipmentType/42", headers=headers,
                            json={"name": "x"}).status_code == 404
        assert client.delete("/api/tables/equipmentType/42", headers=headers).status_code == 404

    def test_modified_time_shape(self, client, headers):
        body = client.get("/api/modified-time", headers=headers).json()
        assert set(body) == {"table", "updated_at"}


class TestPrinting:
    def test_print_section(self, client, headers):
        category = client.post("/api/tables/Categories", headers=headers,
                               json={"header": "Crane Checks", "type": "construction"}).json()["rows"][0]
        column = client.post("/api/tables/ColumnDefinitions", headers=headers, json={
            "category_id": category["id"], "column_name": "Item", "column_order": 1,
        }).json()["rows"][0]
        row = client.post("/api/tables/CategoryData", headers=headers, json={
            "category_id": category["id"], "row_number": 1,
        }).json()["rows"][0]
        client.post("/api/tables/CategoryDataValues", headers=headers, json={
            "category_data_id": row["id"], "column_definition_id": column["id"], "value": "hook",
        })

        page = client.get(f"/api/print/construction/{category['id']}", headers=headers)
        assert page.status_code == 200
        assert page.headers["content-type"].startswith("text/html")
        assert "<td>HOOK</td>" in page.text

        page = client.get("/api/print/construction", headers=headers)
        assert "<h1>Crane Checks</h1>" in page.text

        assert client.get("/api/print/inspection/999", headers=headers).status_code == 404

    def test_print_other_reports(self, client, headers):
        assert client.get("/api/print/equipment", headers=headers).status_code == 200
        assert "Quoted Projects" in client.get("/api/print/quoted-projects", headers=headers).text
        assert client.get("/api/print/unknown", headers=headers).status_code == 422


class TestHoldbacks:
    @pytest.fixture
    def fake_intranet(self, monkeypatch):
        projects = [
            parse_project({"ProjSN": "P-2", "Name": "Roof", "ProjStatus": "Active"}),
            parse_project({"ProjSN": "P-1", "Name": "Bridge", "ProjStatus": "Completed - HB"}),
        ]

        class FakeClient:
            def __init__(self, *args, **kwargs):
                pass

            async def fetch_projects(self):
                return projects

        monkeypatch.setattr(app_module, "IntranetClient", FakeClient)

    def test_grouped(self, client, headers, fake_intranet):
        groups = client.get("/api/holdbacks", headers=headers).json()["groups"]
        assert list(groups) == ["A - Current Active Projects", "B - Holdback Projects"]

    def test_grid_with_search(self, client, headers, fake_intranet):
        body = client.get("/api/holdbacks", headers=headers, params={"grid": "true", "search": "r"}).json()
        assert [p["proj_sn"] for p in body["projects"]] == ["P-1", "P-2"]


class TestChangeStream:
    def test_bad_pin_closes_socket(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/changes?pin=0000") as websocket:
                websocket.receive_text()

    def test_insert_is_streamed(self, client, headers):
        with client.websocket_connect(f"/ws/changes?tables=equipmentType&pin={PIN}") as websocket:
            client.post("/api/tables/equipmentType", headers=headers, json={"name": "Pumps"})
            message = websocket.receive_json()

        assert message["table"] == "equipmentType"
        assert message["type"] == "INSERT"
        assert message["record"]["name"] == "Pumps"
