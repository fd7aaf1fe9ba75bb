import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

import draftworx_api
from draftworx_api import DEFAULT_FRAMEWORK_PATTERN, DraftworxClient, DraftworxConfig
from draftworx_models import COUNTRIES, DEFAULT_COUNTRY_CODE, NotFound
from utils import MCP_PROTOCOL_VERSION, _parse_iso_datetime, _rpc_error, _rpc_result, logger, safe_dumps

MCP_BASE_URL = os.environ.get("MCP_BASE_URL")
DASHBOARD_PAGE_PATH = Path(__file__).resolve().parent / "static" / "dashboard.html"

TRIAL_BALANCE_ENTRY_LIMIT = 50
RECENT_CLIENT_LIMIT = 5
DEFAULT_LIMIT = 20

DASHBOARD_WIDGET = {
    "id": "draftworx_dashboard",
    "title": "Draftworx Dashboard",
    "templateUri": "ui://widget/draftworx-dashboard.html",
    "invoking": "Loading Draftworx data...",
    "invoked": "Data loaded",
    "description": "Displays Draftworx client and financial data",
    "widgetDomain": os.environ.get("DRAFTWORX_WIDGET_DOMAIN", "https://development.cloud.draftworx.com"),
    "mimeType": "text/html+skybridge",
}

router = APIRouter()

_config: DraftworxConfig | None = None
_api_client: DraftworxClient | None = None
_widget_html: str | None = None
_widget_lock = asyncio.Lock()


def configure(config: DraftworxConfig) -> None:
    """Install the process configuration and the gateway built from it."""
    global _config, _api_client
    _config = config
    _api_client = DraftworxClient(config)
    if not config.is_configured():
        logger.warning("Draftworx credentials incomplete: %s", config.status())


def get_config() -> DraftworxConfig:
    if _config is None:
        configure(DraftworxConfig.from_env())
    return _config


def get_api_client() -> DraftworxClient:
    if _api_client is None:
        configure(get_config())
    return _api_client


def _initialize_payload():
    """Standard MCP initialize response for Draftworx."""
    return {
        "protocolVersion": MCP_PROTOCOL_VERSION,
        "capabilities": {
            "tools": {"listChanged": False},
            "resources": {"listChanged": False, "subscribe": False},
            "prompts": {"listChanged": False},
            "logging": {},
        },
        "serverInfo": {"name": "draftworx-mcp", "version": "1.0.0"},
    }


# ---- Widget ----
def widget_meta() -> Dict[str, Any]:
    return {
        "openai/outputTemplate": DASHBOARD_WIDGET["templateUri"],
        "openai/toolInvocation/invoking": DASHBOARD_WIDGET["invoking"],
        "openai/toolInvocation/invoked": DASHBOARD_WIDGET["invoked"],
        "openai/widgetAccessible": False,
        "openai/resultCanProduceWidget": True,
    }


async def _load_widget_html(transport: httpx.AsyncBaseTransport | None = None) -> str:
    if MCP_BASE_URL:
        try:
            async with httpx.AsyncClient(timeout=10, transport=transport) as client:
                resp = await client.get(f"{MCP_BASE_URL.rstrip('/')}/")
            resp.raise_for_status()
            return resp.text
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch widget page from %s, using bundled page: %s", MCP_BASE_URL, e)
    return DASHBOARD_PAGE_PATH.read_text(encoding="utf-8")


async def get_widget_html() -> str:
    """Widget HTML, loaded on first use and reused for the life of the process."""
    global _widget_html
    async with _widget_lock:
        if _widget_html is None:
            _widget_html = await _load_widget_html()
    return _widget_html


def _list_resources_payload():
    return {
        "resources": [
            {
                "uri": DASHBOARD_WIDGET["templateUri"],
                "name": "draftworx-widget",
                "title": DASHBOARD_WIDGET["title"],
                "description": DASHBOARD_WIDGET["description"],
                "mimeType": DASHBOARD_WIDGET["mimeType"],
                "_meta": {
                    "openai/widgetDescription": DASHBOARD_WIDGET["description"],
                    "openai/widgetPrefersBorder": True,
                },
            }
        ]
    }


async def _read_resource(uri: str):
    if uri != DASHBOARD_WIDGET["templateUri"]:
        raise ValueError(f"Unknown resource URI: {uri}")
    return {
        "contents": [
            {
                "uri": uri,
                "mimeType": DASHBOARD_WIDGET["mimeType"],
                "text": f"<html>{await get_widget_html()}</html>",
                "_meta": {
                    "openai/widgetDescription": DASHBOARD_WIDGET["description"],
                    "openai/widgetPrefersBorder": True,
                    "openai/widgetDomain": DASHBOARD_WIDGET["widgetDomain"],
                },
            }
        ]
    }


# ---- Tool arguments ----
class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class NoArgs(ToolArgs):
    pass


class ListClientsArgs(ToolArgs):
    limit: int = Field(DEFAULT_LIMIT, ge=1, description="Maximum number of clients to return (default: 20)")


class SearchClientsArgs(ToolArgs):
    query: str = Field(description="Search query to match against client names")


class GetClientArgs(ToolArgs):
    client_id: str = Field(description="The UUID of the client")


class CreateClientArgs(ToolArgs):
    name: str = Field(min_length=1, description="The name of the new client/company")
    tax_year: Optional[int] = Field(None, description="The tax year (default: current year)")
    country: Literal["ZA", "UK"] = Field(
        DEFAULT_COUNTRY_CODE, description="Country code: ZA (South Africa) or UK (United Kingdom)"
    )
    framework: str = Field(
        DEFAULT_FRAMEWORK_PATTERN, description="Framework pattern to match (default: 'ifrs sme')"
    )


class GetTrialBalanceArgs(ToolArgs):
    client_id: str = Field(description="The UUID of the client")
    financial_year_id: Optional[str] = Field(
        None, description="Optional: specific financial year ID (defaults to current year)"
    )


class ListFrameworksArgs(ToolArgs):
    country: Optional[Literal["ZA", "UK"]] = Field(None, description="Filter by country code")
    limit: int = Field(DEFAULT_LIMIT, ge=1, description="Maximum number to return (default: 20)")


class DashboardArgs(ToolArgs):
    view: Literal["summary", "clients", "recent"] = Field("summary", description="Dashboard view type")


# ---- Tool results ----
def _text_result(payload: Any, **extra) -> Dict[str, Any]:
    text = payload if isinstance(payload, str) else safe_dumps(payload, indent=2)
    return {"content": [{"type": "text", "text": text}], **extra}


def _tool_error(text: str, reason: str, exception_type: str | None = None) -> Dict[str, Any]:
    metadata = {"reason": reason}
    if exception_type:
        metadata["exceptionType"] = exception_type
    return {"isError": True, "content": [{"type": "text", "text": text}], "metadata": metadata}


def _failure(error: Exception, prefix: str = "Error") -> Dict[str, Any]:
    return _tool_error(f"{prefix}: {error}", getattr(error, "reason", "exception"), type(error).__name__)


# ---- Tool handlers ----
async def _list_clients(api: DraftworxClient, args: ListClientsArgs):
    result = await draftworx_api.get_active_clients(api)
    if not result.ok:
        return _failure(result.error)
    clients = result.value
    limited = clients[: args.limit]
    return _text_result({
        "total": len(clients),
        "showing": len(limited),
        "clients": [
            {
                "id": c.id,
                "name": c.name,
                "taxYear": c.tax_year,
                "entityType": c.entity_description,
                "currency": c.currency_symbol,
                "inBalance": c.in_balance,
                "created": c.created,
            }
            for c in limited
        ],
    })


async def _search_clients(api: DraftworxClient, args: SearchClientsArgs):
    result = await draftworx_api.search_clients(api, args.query)
    if not result.ok:
        return _failure(result.error)
    return _text_result({
        "query": args.query,
        "found": len(result.value),
        "clients": [
            {
                "id": c.id,
                "name": c.name,
                "taxYear": c.tax_year,
                "entityType": c.entity_description,
                "currency": c.currency_symbol,
            }
            for c in result.value
        ],
    })


async def _get_client(api: DraftworxClient, args: GetClientArgs):
    result = await draftworx_api.get_client(api, args.client_id)
    if not result.ok:
        return _failure(result.error)
    client = result.value
    if client is None:
        error = NotFound("Client", args.client_id)
        return _tool_error(str(error), error.reason)
    return _text_result({
        "id": client.id,
        "name": client.name,
        "engagementName": client.engagement_name,
        "taxYear": client.tax_year,
        "entityType": client.entity_description,
        "currency": client.currency_symbol,
        "taxRate": client.tax_rate,
        "inBalance": client.in_balance,
        "status": client.status,
        "financialYears": [
            {"id": fy.id, "start": fy.start, "end": fy.end, "current": fy.current}
            for fy in client.financial_years
        ],
        "created": client.created,
        "modified": client.modified,
    })


async def _create_client(api: DraftworxClient, args: CreateClientArgs):
    tax_year = args.tax_year or datetime.now().year
    result = await draftworx_api.create_client(api, args.name, tax_year, args.country, args.framework)
    if not result.ok:
        return _failure(result.error, prefix="Error creating client")
    client = result.value
    return _text_result(
        f'✅ Client "{client.name}" created successfully! ID: {client.id}',
        structuredContent={
            "success": True,
            "client": {
                "id": client.id,
                "name": client.name,
                "taxYear": client.tax_year,
                "framework": client.framework_id,
                "country": client.country_of_incorporation,
                "created": client.created,
            },
        },
        _meta=widget_meta(),
    )


async def _get_trial_balance(api: DraftworxClient, args: GetTrialBalanceArgs):
    result = await draftworx_api.get_trial_balance(api, args.client_id, args.financial_year_id)
    if not result.ok:
        return _failure(result.error)
    tb = result.value
    entries = tb.entries
    payload = {
        "clientId": tb.client_id,
        "financialYearId": tb.financial_year_id,
        "entriesCount": len(entries),
        "totals": tb.totals.to_payload(),
        "entries": [
            {
                "account": e.account,
                "name": e.name,
                "link": e.link,
                "type": e.type,
                "openingBalance": e.opening_balance,
                "adjustments": e.adjustments,
                "final": e.final,
            }
            for e in entries[:TRIAL_BALANCE_ENTRY_LIMIT]
        ],
    }
    if len(entries) > TRIAL_BALANCE_ENTRY_LIMIT:
        payload["note"] = f"Showing first {TRIAL_BALANCE_ENTRY_LIMIT} of {len(entries)} entries"
    return _text_result(payload)


async def _get_client_summary(api: DraftworxClient, args: NoArgs):
    result = await draftworx_api.get_client_summary(api)
    if not result.ok:
        return _failure(result.error)
    summary = result.value
    return _text_result({
        "totalClients": summary.total,
        "activeClients": summary.active,
        "deletedClients": summary.deleted,
        "clientsByTaxYear": summary.by_year,
    })


async def _list_frameworks(api: DraftworxClient, args: ListFrameworksArgs):
    if args.country:
        result = await draftworx_api.get_frameworks_for_country(api, COUNTRIES[args.country].id)
    else:
        result = await draftworx_api.get_frameworks(api)
    if not result.ok:
        return _failure(result.error)
    frameworks = result.value
    limited = frameworks[: args.limit]
    return _text_result({
        "total": len(frameworks),
        "showing": len(limited),
        "country": args.country or "all",
        "frameworks": [
            {"id": f.id, "name": f.display_name or f.name, "description": f.description, "active": f.active}
            for f in limited
        ],
    })


async def _get_practice_info(api: DraftworxClient, args: NoArgs):
    result = await draftworx_api.get_practices(api)
    if not result.ok:
        return _failure(result.error)
    status = api.config.status()
    return _text_result({
        "configured": status["configured"],
        "apiHost": status["host"],
        "practices": [
            {"id": p.id, "name": p.name, "email": p.email, "type": p.practice_type}
            for p in result.value
        ],
    })


def _recent_clients(clients, limit: int = RECENT_CLIENT_LIMIT):
    return sorted(
        clients,
        key=lambda c: _parse_iso_datetime(c.modified) or datetime.min,
        reverse=True,
    )[:limit]


async def _dashboard(api: DraftworxClient, args: DashboardArgs):
    summary_result = await draftworx_api.get_client_summary(api)
    if not summary_result.ok:
        return _failure(summary_result.error)
    clients_result = await draftworx_api.get_active_clients(api)
    if not clients_result.ok:
        return _failure(clients_result.error)

    summary = summary_result.value
    clients = clients_result.value
    structured = {
        "view": args.view,
        "summary": {"total": summary.total, "active": summary.active, "deleted": summary.deleted},
        "recentClients": [
            {"id": c.id, "name": c.name, "taxYear": c.tax_year, "modified": c.modified}
            for c in _recent_clients(clients)
        ],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if args.view == "clients":
        structured["clients"] = [
            {"id": c.id, "name": c.name, "taxYear": c.tax_year, "entityType": c.entity_description}
            for c in clients[:DEFAULT_LIMIT]
        ]
    return _text_result(
        f"Draftworx Dashboard - {args.view} view",
        structuredContent=structured,
        _meta=widget_meta(),
    )


TOOLS: Dict[str, Dict[str, Any]] = {
    "list_clients": {
        "title": "List Draftworx Clients",
        "description": "List all active clients in the Draftworx practice. Returns client names, tax years, and entity types.",
        "args": ListClientsArgs,
        "handler": _list_clients,
    },
    "search_clients": {
        "title": "Search Draftworx Clients",
        "description": "Search for clients by name in the Draftworx practice.",
        "args": SearchClientsArgs,
        "handler": _search_clients,
    },
    "get_client": {
        "title": "Get Client Details",
        "description": "Get detailed information about a specific Draftworx client by ID.",
        "args": GetClientArgs,
        "handler": _get_client,
    },
    "create_client": {
        "title": "Create New Client",
        "description": "Create a new client in Draftworx. Defaults to South Africa with IFRS SME framework.",
        "args": CreateClientArgs,
        "handler": _create_client,
        "widget": True,
    },
    "get_trial_balance": {
        "title": "Get Trial Balance",
        "description": "Get the trial balance for a specific client. Shows account balances, adjustments, and final values.",
        "args": GetTrialBalanceArgs,
        "handler": _get_trial_balance,
    },
    "get_client_summary": {
        "title": "Get Client Summary",
        "description": "Get a summary of all clients in the practice, including counts by status and tax year.",
        "args": NoArgs,
        "handler": _get_client_summary,
    },
    "list_frameworks": {
        "title": "List Frameworks",
        "description": "List available accounting frameworks. Optionally filter by country.",
        "args": ListFrameworksArgs,
        "handler": _list_frameworks,
    },
    "get_practice_info": {
        "title": "Get Practice Info",
        "description": "Get information about the current Draftworx practice.",
        "args": NoArgs,
        "handler": _get_practice_info,
    },
    DASHBOARD_WIDGET["id"]: {
        "title": DASHBOARD_WIDGET["title"],
        "description": "Display the Draftworx dashboard with client overview",
        "args": DashboardArgs,
        "handler": _dashboard,
        "widget": True,
    },
}


def _input_schema(model) -> Dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.setdefault("properties", {})
    return schema


def _list_tools_payload():
    tools = []
    for name, spec in TOOLS.items():
        tool = {
            "name": name,
            "title": spec["title"],
            "description": spec["description"],
            "inputSchema": _input_schema(spec["args"]),
        }
        if spec.get("widget"):
            tool["_meta"] = widget_meta()
        tools.append(tool)
    return {"tools": tools}


async def handle_tool_call(name: str, args: Dict):
    spec = TOOLS.get(name)
    if spec is None:
        return _tool_error(f"Unknown tool '{name}'. Available tools: {sorted(TOOLS)}", "unknownTool")

    try:
        parsed = spec["args"].model_validate(args or {})
    except ValidationError as e:
        return _tool_error(f"Invalid arguments for {name}: {e}", "invalidArguments")

    try:
        return await spec["handler"](get_api_client(), parsed)
    except Exception as e:
        logger.exception("Tool error during %s", name)
        return _tool_error(f"Error: {e}", "exception", type(e).__name__)


# ---- Router Setup ----
@router.get("/mcp")
def draftworx_index():
    """Basic index endpoint so GET /mcp doesn't 405 behind nginx."""
    return {
        "service": "draftworx-mcp",
        "status": "ok",
        "endpoints": {
            "health": "/healthz",
            "mcp": "/mcp",
        },
    }


@router.get("/healthz")
def draftworx_healthz():
    return {"status": "ok", "service": "draftworx", **get_config().status()}


@router.post("/")
@router.post("/mcp")
async def handle_mcp_request(request: Request):
    """
    Standard MCP endpoint for Draftworx tools.
    JSON-RPC 2.0
    """
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON-RPC object")

    rpc_id = body.get("id")
    method = body.get("method")
    params = body.get("params") or {}
    if not isinstance(params, dict):
        return _rpc_error(rpc_id, -32602, "Invalid params: expected an object")

    if method == "initialize":
        return _rpc_result(rpc_id, _initialize_payload())

    elif method == "ping":
        return _rpc_result(rpc_id, {})

    elif method and method.startswith("notifications/"):
        return Response(status_code=202)

    elif method == "tools/list":
        return _rpc_result(rpc_id, _list_tools_payload())

    elif method == "tools/call":
        name = params.get("name")
        args = params.get("arguments") or {}
        result = await handle_tool_call(name, args)
        return _rpc_result(rpc_id, result)

    elif method == "resources/list":
        return _rpc_result(rpc_id, _list_resources_payload())

    elif method == "resources/templates/list":
        return _rpc_result(rpc_id, {"resourceTemplates": []})

    elif method == "resources/read":
        uri = params.get("uri")
        try:
            return _rpc_result(rpc_id, await _read_resource(uri))
        except ValueError as e:
            return _rpc_error(rpc_id, -32602, str(e))

    elif method == "prompts/list":
        return _rpc_result(rpc_id, {"prompts": []})

    elif method == "prompts/get":
        return _rpc_result(rpc_id, {"messages": []})

    else:
        return _rpc_error(rpc_id, -32601, f"Method {method} not found")
