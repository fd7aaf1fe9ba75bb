import copy
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple, Union

import pytest
import pytest_asyncio

sys.path.append(str(Path(__file__).resolve().parents[1]))

import draftworx_mcp
from draftworx_api import DraftworxConfig
from draftworx_models import COUNTRIES, ApiError

REQUIRED_TOOLS: set[str] = {
    "list_clients",
    "search_clients",
    "get_client",
    "create_client",
    "get_trial_balance",
    "get_client_summary",
    "list_frameworks",
    "get_practice_info",
    "draftworx_dashboard",
}

ZA_ID = COUNTRIES["ZA"].id
UK_ID = COUNTRIES["UK"].id
FRAMEWORKS_PATH = "/frameworks?$filter=active%20eq%20true"

CLIENTS: List[Dict[str, Any]] = [
    {
        "id": "c-1",
        "name": "Acme Holdings",
        "engagementName": "Acme 2025 AFS",
        "taxYear": 2025,
        "entityType": 1,
        "entityDescription": "Company",
        "currencySymbol": "R",
        "taxRate": 27,
        "inBalance": True,
        "deleted": False,
        "archived": False,
        "locked": False,
        "financialYears": [
            {"id": "fy-1a", "start": "2023-03-01T00:00:00", "end": "2024-02-29T00:00:00", "current": False},
            {"id": "fy-1b", "start": "2024-03-01T00:00:00", "end": "2025-02-28T00:00:00", "current": True},
        ],
        "created": "2024-01-10T08:00:00",
        "modified": "2024-06-01T09:30:00",
    },
    {
        "id": "c-2",
        "name": "Blue Crane Trading",
        "engagementName": "Widget Works",
        "taxYear": 2024,
        "entityDescription": "Close Corporation",
        "currencySymbol": "R",
        "deleted": False,
        "archived": False,
        "financialYears": [
            {"id": "fy-2a", "start": "2023-03-01T00:00:00", "end": "2024-02-29T00:00:00", "current": False},
            {"id": "fy-2b", "start": "2022-03-01T00:00:00", "end": "2023-02-28T00:00:00", "current": False},
        ],
        "created": "2023-05-01T08:00:00",
        "modified": "2024-08-15T12:00:00Z",
    },
    {
        "id": "c-3",
        "name": "Old Mill Partners",
        "engagementName": "Old Mill",
        "taxYear": 2023,
        "deleted": True,
        "archived": False,
        "financialYears": [],
        "created": "2021-01-01T00:00:00",
        "modified": "2022-01-01T00:00:00",
    },
    {
        "id": "c-4",
        "name": "Archived Acme Trust",
        "engagementName": "Trust",
        "taxYear": 2025,
        "deleted": False,
        "archived": True,
        "financialYears": None,
        "created": "2022-01-01T00:00:00",
        "modified": "2024-09-01T00:00:00",
    },
    {
        "id": "c-5",
        "name": "Empty Books Ltd",
        "engagementName": "Empty",
        "taxYear": 2025,
        "locked": True,
        "created": "2024-02-01T00:00:00",
        "modified": None,
    },
]

FRAMEWORKS: List[Dict[str, Any]] = [
    {"id": "fw-za-full", "name": "ifrs", "displayName": "IFRS Full", "active": True, "countryId": ZA_ID},
    {"id": "fw-za-sme", "name": "ifrs-sme", "displayName": "IFRS SME", "active": True, "countryId": ZA_ID},
    {"id": "fw-za-micro", "name": "micro", "displayName": None, "active": True, "countryId": ZA_ID},
    {"id": "fw-uk-frs102", "name": "frs102", "displayName": "FRS 102", "active": True, "countryId": UK_ID},
    {"id": "fw-uk-ifrs-sme", "name": "IFRS SME UK", "active": True, "countryId": UK_ID},
]

PRACTICES: List[Dict[str, Any]] = [
    {"id": "p-1", "name": "Smith & Co", "email": "info@smith.example", "telephone": "021 555 0100", "practiceType": "Accounting"},
]

TRIAL_BALANCE: List[Dict[str, Any]] = [
    {"id": "tb-1", "account": "1000", "name": "Bank", "link": "BS001", "linkDescription": "Cash", "type": "BS",
     "openingBalance": 100.10, "adjustments": 0.2, "final": 100.30},
    {"id": "tb-2", "account": "4000", "name": "Sales", "link": "IS001", "linkDescription": "Revenue", "type": "IS",
     "openingBalance": -50.05, "adjustments": 0.1, "final": -49.95},
    {"id": "tb-3", "account": "9000", "name": "Suspense", "type": "BS", "openingBalance": None, "adjustments": None,
     "final": None},
]

CREATED_CLIENT: Dict[str, Any] = {
    "id": "c-new",
    "name": "Acme",
    "engagementName": "Acme",
    "taxYear": 2025,
    "frameworkId": "fw-za-sme",
    "countryId": ZA_ID,
    "countryOfIncorporation": "South Africa",
    "created": "2025-01-01T00:00:00",
}


class StubDraftworxApi:
    """Stands in for DraftworxClient: canned JSON per (method, path), calls recorded."""

    def __init__(self, routes: Dict[Tuple[str, str], Any] | None = None, config: DraftworxConfig | None = None):
        self.routes = dict(routes or {})
        self.calls: List[Tuple[str, str, Any]] = []
        self.config = config or DraftworxConfig(bearer_token="token", practice_id="practice-1")

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        self.calls.append((method, path, body))
        response = self.routes.get((method, path))
        if response is None:
            raise ApiError(404, f"No stub for {method} {path}")
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    def calls_to(self, method: str, path: str) -> List[Tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == method and c[1] == path]


def default_routes() -> Dict[Tuple[str, str], Any]:
    return {
        ("GET", "/Clients"): CLIENTS,
        ("GET", FRAMEWORKS_PATH): FRAMEWORKS,
        ("GET", "/Practices"): PRACTICES,
        ("GET", "/TrialBalances/fy-1b"): TRIAL_BALANCE,
        ("GET", "/TrialBalances/fy-1a"): TRIAL_BALANCE[:1],
        ("GET", "/TrialBalances/fy-2a"): [],
        ("POST", "/Clients"): [CREATED_CLIENT],
    }


@pytest.fixture
def stub_api() -> StubDraftworxApi:
    return StubDraftworxApi(default_routes())


@pytest.fixture(autouse=True)
def install_stub_api(monkeypatch: pytest.MonkeyPatch, stub_api: StubDraftworxApi):
    monkeypatch.setattr(draftworx_mcp, "_api_client", stub_api)
    monkeypatch.setattr(draftworx_mcp, "_config", stub_api.config)
    return stub_api


def decode_tool_payload(response: Dict[str, Any]) -> Union[Dict[str, Any], List[Any]]:
    if not isinstance(response, dict):
        return {"error": "unexpected-response", "raw": response}
    if response.get("isError"):
        return {"isError": True, "content": response.get("content"), "metadata": response.get("metadata")}

    content = response.get("content") or []
    text = None
    if content and isinstance(content, list) and isinstance(content[0], dict):
        text = content[0].get("text")
    if text is None:
        return {"error": "missing-content"}
    try:
        payload = json.loads(text)
    except Exception:
        return {"raw": text}
    return payload


def error_text(response: Dict[str, Any]) -> str:
    return response["content"][0]["text"]


@pytest_asyncio.fixture
async def call_tool() -> Callable[[str, Dict[str, Any]], Any]:
    async def _call(name: str, args: Dict[str, Any]):
        return await draftworx_mcp.handle_tool_call(name, args)

    return _call
