import os
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

# Load environment variables
load_dotenv()

from utils import logger, MCP_PROTOCOL_VERSION
from draftworx_api import DraftworxConfig
import draftworx_mcp

# Configuration is read once here and handed to the MCP router
draftworx_mcp.configure(DraftworxConfig.from_env())

# Initialize FastAPI app
app = FastAPI(title="Draftworx MCP Server", version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request Logging Middleware
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        logger.info(f"Incoming request: {request.method} {request.url}")
        if request.method.upper() == "POST" and request.url.path.endswith("/mcp"):
            logger.debug("Routing MCP call for path=%s", request.url.path)
        try:
            response = await call_next(request)
            logger.info(f"Request completed: {response.status_code}")
            return response
        except Exception as e:
            logger.error(f"Request failed: {e}")
            raise

app.add_middleware(RequestLoggingMiddleware)

# Mount Routers
app.include_router(draftworx_mcp.router, prefix="", tags=["draftworx"])

# Serve static files (display page assets)
if draftworx_mcp.DASHBOARD_PAGE_PATH.parent.exists():
    app.mount("/static", StaticFiles(directory=draftworx_mcp.DASHBOARD_PAGE_PATH.parent), name="static")


@app.get("/", response_class=HTMLResponse)
async def root():
    """Display page rendered inside the chat client as the dashboard widget."""
    return HTMLResponse(content=draftworx_mcp.DASHBOARD_PAGE_PATH.read_text(encoding="utf-8"))


# Global MCP Manifest
@app.get("/.well-known/mcp.json")
async def mcp_manifest():
    tools = draftworx_mcp._list_tools_payload().get("tools", [])
    resources = draftworx_mcp._list_resources_payload().get("resources", [])

    return {
        "mcpVersion": MCP_PROTOCOL_VERSION,
        "capabilities": {
            "tools": {
                "listChanged": False
            },
            "resources": {
                "listChanged": False,
                "subscribe": False
            },
            "prompts": {
                "listChanged": False
            },
            "logging": {}
        },
        "serverInfo": {
            "name": "draftworx-mcp",
            "version": "1.0.0"
        },
        "tools": [t["name"] for t in tools],
        "resources": [r["uri"] for r in resources],
    }


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=port)
