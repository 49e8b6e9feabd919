"""
ARAG Agent Copilot — Workspace API Server
FastAPI app serving the agent workspace: run a case, review history,
edit the playbook and the cloud settings.
Run with: uvicorn outputs.dashboard:app
"""
import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings import config
from config.workspace import CloudSettings, open_config_store
from memory.history import remote_is_authoritative
from orchestrator.case import CaseState, build_generator, build_history, build_workspace
from orchestrator.errors import CaseInProgressError, InvalidInputError
from orchestrator.knowledge import EmailInput

logger = logging.getLogger("copilot.dashboard")

# ============================================================
# Authentication
# ============================================================

_COPILOT_API_KEY = config.dashboard.api_key


async def verify_api_key(x_copilot_key: str = Header(None, alias="X-Copilot-Key")):
    """Validate API key from X-Copilot-Key header."""
    if not _COPILOT_API_KEY:
        logger.error("COPILOT_API_KEY not configured, API disabled")
        raise HTTPException(
            status_code=503,
            detail="API key not configured, service disabled",
        )
    if x_copilot_key != _COPILOT_API_KEY:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "X-Copilot-Key"},
        )


# ============================================================
# Logging: must be module-level so uvicorn outputs.dashboard:app picks it up
# ============================================================
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)

# ============================================================
# App setup
# ============================================================

app = FastAPI(
    title="ARAG Agent Copilot",
    description="Workspace API for triaging client emails",
    version="3.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.dashboard.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "X-Copilot-Key"],
)

# ============================================================
# Singletons (initialized lazily)
# ============================================================

_config_store = None
_workspace = None

# Failed-case status codes; anything not listed is a 502
_FAILURE_STATUS = {
    "missing_credential": 428,
    "authentication_failed": 401,
}


def _get_config_store():
    """Lazy-initialize the config store singleton."""
    global _config_store
    if _config_store is None:
        _config_store = open_config_store()
    return _config_store


def _get_workspace():
    """Lazy-initialize the workspace (orchestrator) singleton."""
    global _workspace
    if _workspace is None:
        _workspace = build_workspace(_get_config_store())
    return _workspace


# ============================================================
# Request models
# ============================================================

class PlaybookRequest(BaseModel):
    rules_text: str = Field(..., max_length=50_000)


class CloudSettingsRequest(BaseModel):
    url: str = ""
    api_key: str = ""
    enabled: bool = False


class ApiKeyRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


def _mask(secret: str) -> str:
    if not secret:
        return ""
    return f"{secret[:4]}…{secret[-4:]}" if len(secret) > 12 else "…"


# ============================================================
# Case
# ============================================================

@app.get("/api/case", tags=["case"], dependencies=[Depends(verify_api_key)])
async def get_case():
    """Current workspace state."""
    return _get_workspace().snapshot().to_dict()


@app.post("/api/case", tags=["case"], dependencies=[Depends(verify_api_key)])
async def run_case(
    client_id: Optional[str] = Form(
        None, description="Client ID / name; blank to auto-detect, omitted to use the loaded client"
    ),
    email_text: Optional[str] = Form(None, description="Pasted email text"),
    screenshot: Optional[UploadFile] = File(None, description="Email screenshot"),
):
    """Analyze one email and draft bilingual replies."""
    image = None
    if screenshot is not None:
        data = await screenshot.read()
        media_type = screenshot.content_type or ""
        image = EmailInput.from_image(data, media_type if media_type.startswith("image/") else None).image
    # Both fields go through validation; sending both is rejected there
    email = EmailInput(image=image, text=email_text)

    workspace = _get_workspace()
    try:
        # Generation blocks; keep it off the event loop
        snapshot = await asyncio.to_thread(workspace.run_case, email, client_id)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CaseInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if snapshot.state == CaseState.FAILED:
        return JSONResponse(
            status_code=_FAILURE_STATUS.get(snapshot.error_kind, 502),
            content=snapshot.to_dict(),
        )
    return snapshot.to_dict()


@app.post("/api/case/edit", tags=["case"], dependencies=[Depends(verify_api_key)])
async def edit_case():
    """Back to the input view, keeping client and input."""
    try:
        _get_workspace().edit()
    except CaseInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _get_workspace().snapshot().to_dict()


@app.post("/api/case/reset", tags=["case"], dependencies=[Depends(verify_api_key)])
async def reset_case():
    """Start the next case: discard all inputs and results."""
    _get_workspace().reset_workspace()
    return _get_workspace().snapshot().to_dict()


# ============================================================
# History
# ============================================================

@app.get("/api/history/{client_id}", tags=["history"], dependencies=[Depends(verify_api_key)])
async def get_history(client_id: str):
    """Select a client and return its interaction history (newest first)."""
    try:
        history = await asyncio.to_thread(_get_workspace().load_client, client_id)
    except CaseInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "client_id": client_id.strip(),
        "count": len(history),
        "history": [r.to_dict() for r in history],
    }


# ============================================================
# Playbook
# ============================================================

@app.get("/api/playbook", tags=["playbook"], dependencies=[Depends(verify_api_key)])
async def get_playbook():
    playbook = _get_config_store().get_playbook()
    return {"rules_text": playbook.rules_text, "handbook_name": playbook.handbook_name}


@app.put("/api/playbook", tags=["playbook"], dependencies=[Depends(verify_api_key)])
async def update_playbook(req: PlaybookRequest):
    _get_config_store().save_playbook_rules(req.rules_text)
    return {"status": "saved", "chars": len(req.rules_text)}


@app.post("/api/playbook/handbook", tags=["playbook"], dependencies=[Depends(verify_api_key)])
async def upload_handbook(file: UploadFile = File(...)):
    """Attach a PDF policy handbook sent with every case."""
    contents = await file.read()
    if len(contents) > 32 * 1024 * 1024:
        raise HTTPException(status_code=413, detail="File too large. Maximum size: 32MB.")
    try:
        handbook = _get_config_store().attach_handbook(file.filename or "handbook.pdf", contents)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "attached", "handbook_name": handbook.name, "bytes": len(contents)}


@app.delete("/api/playbook/handbook", tags=["playbook"], dependencies=[Depends(verify_api_key)])
async def remove_handbook():
    removed = _get_config_store().detach_handbook()
    return {"status": "removed" if removed else "none"}


# ============================================================
# Settings
# ============================================================

@app.get("/api/settings/cloud", tags=["settings"], dependencies=[Depends(verify_api_key)])
async def get_cloud_settings():
    settings = _get_config_store().get_cloud_settings()
    return {
        "url": settings.url,
        "api_key": _mask(settings.api_key),
        "enabled": settings.enabled,
        "authoritative": remote_is_authoritative(settings),
    }


@app.put("/api/settings/cloud", tags=["settings"], dependencies=[Depends(verify_api_key)])
async def update_cloud_settings(req: CloudSettingsRequest):
    """Save cloud settings and reselect the history store."""
    store = _get_config_store()
    settings = CloudSettings(url=req.url.strip(), api_key=req.api_key.strip(), enabled=req.enabled)
    store.save_cloud_settings(settings)
    _get_workspace().set_history_store(build_history(store))
    return {"status": "saved", "authoritative": remote_is_authoritative(settings)}


@app.put("/api/settings/api-key", tags=["settings"], dependencies=[Depends(verify_api_key)])
async def update_api_key(req: ApiKeyRequest):
    store = _get_config_store()
    store.save_api_key(req.api_key)
    _get_workspace().set_generator(build_generator(store))
    return {"status": "saved"}


@app.delete("/api/settings/api-key", tags=["settings"], dependencies=[Depends(verify_api_key)])
async def clear_api_key():
    store = _get_config_store()
    store.clear_api_key()
    _get_workspace().set_generator(build_generator(store))
    return {"status": "cleared"}


# ============================================================
# Status
# ============================================================

@app.get("/api/status", tags=["system"], dependencies=[Depends(verify_api_key)])
async def get_status():
    store = _get_config_store()
    workspace = _get_workspace()
    playbook = store.get_playbook()
    return {
        "state": workspace.state.value,
        "history_mode": workspace.history_store.mode,
        "credential_configured": bool(store.get_api_key()),
        "model": config.claude.model,
        "handbook_attached": playbook.handbook is not None,
    }
