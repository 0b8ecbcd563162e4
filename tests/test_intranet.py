"""Tests for the intranet holdback project client."""

import httpx
import pytest

from holdback.errors import IntranetError
from holdback.intranet import (
    IntranetClient, filter_projects, group_by_status, parse_project, sorted_grid,
)

PAYLOAD = [
    {"ProjSN": "P-200", "JobNum": "J9", "Name": "Library Roof", "Contractor": "Acme",
     "ProjStatus": "Active", "ProjValue": "125000"},
    {"ProjSN": "P-100", "JobNum": "J4", "Name": "Bridge Deck", "Contractor": "Northway",
     "ProjStatus": "Completed - HB", "ProjValue": None},
    {"ProjSN": "P-300", "JobNum": "J7", "Name": "Clinic", "Contractor": "acme builders",
     "ProjStatus": "Done", "ProjValue": "n/a"},
]


def make_client(handler):
    return IntranetClient("https://intranet.test/holdbacks/", "secret",
                          transport=httpx.MockTransport(handler))


@pytest.fixture
def projects():
    return [parse_project(raw) for raw in PAYLOAD]


def test_parse_project_defaults(projects):
    assert projects[0].value == 125000.0
    assert projects[1].value == 0.0
    assert projects[2].value == 0.0
    assert projects[1].summary == ""


def test_filter_is_case_insensitive(projects):
    assert [p.proj_sn for p in filter_projects(projects, "ACME")] == ["P-200", "P-300"]
    assert [p.proj_sn for p in filter_projects(projects, "j4")] == ["P-100"]
    assert filter_projects(projects, "") == projects
    assert [p.proj_sn for p in filter_projects(projects, "acme", status="Done")] == ["P-300"]


def test_group_by_status_skips_empty_groups(projects):
    groups = group_by_status(projects)

    assert list(groups) == [
        "A - Current Active Projects", "B - Holdback Projects", "D - Finished Projects",
    ]


def test_sorted_grid(projects):
    assert [p.proj_sn for p in sorted_grid(projects)] == ["P-100", "P-200", "P-300"]


@pytest.mark.asyncio
async def test_fetch_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=PAYLOAD)

    projects = await make_client(handler).fetch_projects()

    assert seen["auth"] == "Bearer secret"
    assert len(projects) == 3


@pytest.mark.asyncio
async def test_fetch_raises_on_http_error():
    client = make_client(lambda request: httpx.Response(503))

    with pytest.raises(IntranetError):
        await client.fetch_projects()


@pytest.mark.asyncio
async def test_fetch_rejects_unexpected_payload():
    client = make_client(lambda request: httpx.Response(200, json={"error": "nope"}))

    with pytest.raises(IntranetError):
        await client.fetch_projects()
