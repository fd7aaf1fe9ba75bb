import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict
from uuid import UUID

# Machine Coordination Protocol defaults
MCP_PROTOCOL_VERSION = "2024-11-05"

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("draftworx")

def _json_default(o):
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, Decimal):
        return float(o)
    if isinstance(o, UUID):
        return str(o)
    if isinstance(o, Enum):
        # Prefer value if it's simple, otherwise name
        return o.value if isinstance(o.value, (str, int, float, bool, type(None))) else o.name
    to_dict = getattr(o, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    model_dump = getattr(o, "model_dump", None)
    if callable(model_dump):
        return model_dump(by_alias=True)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

def safe_dumps(obj, indent: int | None = None) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=False, indent=indent)

def _parse_iso_datetime(dt_str: str | None) -> datetime | None:
    """Parse an ISO timestamp into a naive UTC datetime, or None when unparseable."""
    if not dt_str:
        return None
    try:
        parsed = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

def _rpc_result(rpc_id: Any, result: Dict[str, Any]):
    return {"jsonrpc": "2.0", "id": rpc_id, "result": result}

def _rpc_error(rpc_id: Any, code: int, message: str, data: Any = None):
    err = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": rpc_id, "error": err}
