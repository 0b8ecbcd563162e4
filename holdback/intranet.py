# holdback/intranet.py - Holdback projects from the company intranet

from collections import OrderedDict
from typing import Any, Dict, List, Optional
import logging

import httpx

from holdback.errors import IntranetError
from holdback.models import HoldbackProject

logger = logging.getLogger(__name__)

# Status -> table heading, in display order
STATUS_HEADERS = OrderedDict([
    ("Active", "A - Current Active Projects"),
    ("Completed - HB", "B - Holdback Projects"),
    ("Completed - Maint HB", "C - Maintenance Holdback Projects"),
    ("Done", "D - Finished Projects"),
])


def parse_project(raw: Dict[str, Any]) -> HoldbackProject:
    try:
        value = float(raw.get("ProjValue") or 0)
    except (TypeError, ValueError):
        value = 0.0
    return HoldbackProject(
        proj_sn=str(raw.get("ProjSN") or ""),
        job_num=str(raw.get("JobNum") or ""),
        name=str(raw.get("Name") or ""),
        contractor=str(raw.get("Contractor") or ""),
        summary=str(raw.get("Summary") or ""),
        status=str(raw.get("ProjStatus") or ""),
        proj_num=str(raw.get("ProjNum") or ""),
        value=value,
    )


def filter_projects(projects: List[HoldbackProject], keyword: str = "",
                    status: Optional[str] = None) -> List[HoldbackProject]:
    """Case-insensitive match on serial, job number, name or contractor"""
    keyword = keyword.lower()
    matches = []
    for project in projects:
        if status is not None and project.status != status:
            continue
        haystack = (project.proj_sn, project.job_num, project.name, project.contractor)
        if keyword and not any(keyword in field.lower() for field in haystack):
            continue
        matches.append(project)
    return matches


def group_by_status(projects: List[HoldbackProject]) -> "OrderedDict[str, List[HoldbackProject]]":
    """Projects per status heading; empty statuses are left out"""
    groups: "OrderedDict[str, List[HoldbackProject]]" = OrderedDict()
    for status, header in STATUS_HEADERS.items():
        matching = [p for p in projects if p.status == status]
        if matching:
            groups[header] = matching
    return groups


def sorted_grid(projects: List[HoldbackProject]) -> List[HoldbackProject]:
    return sorted(projects, key=lambda p: p.proj_sn)


class IntranetClient:
    def __init__(self, url: str, token: str, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def fetch_projects(self) -> List[HoldbackProject]:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Intranet request failed: {e}")
            raise IntranetError(f"Intranet request failed: {e}") from e
        except ValueError as e:
            raise IntranetError("Intranet returned invalid JSON") from e

        if not isinstance(payload, list):
            raise IntranetError("Intranet returned an unexpected payload")
        return [parse_project(raw) for raw in payload]
