"""
MedVault - Main Entry Point

FastAPI service exposing the authorization registry, the public-key
directory and the audit trail. Ciphertext never passes through here: clients
encrypt locally, store the package in a blob store and register only the
content reference and wrapped keys.

Runs on http://127.0.0.1:18422 by default.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import (
    IDENTITY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    AuthenticationFailed,
    RequestAuthenticator,
)
from config import VERSION, config
from crypto.errors import CryptoError
from logging_config import configure_logging
from registry import (
    AccessDenied,
    AuditLog,
    AuthorizationRegistry,
    KeyAlreadyRegistered,
    NotOwner,
    PublicKeyDirectory,
    RecordNotFound,
    RegistryError,
    UnknownIdentity,
)

__version__ = VERSION

logger = logging.getLogger(__name__)


# Global state
class AppState:
    """Application state container."""
    directory: Optional[PublicKeyDirectory] = None
    audit: Optional[AuditLog] = None
    registry: Optional[AuthorizationRegistry] = None
    authenticator: Optional[RequestAuthenticator] = None


app_state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    app_state.directory = PublicKeyDirectory()
    app_state.audit = AuditLog(config.audit_journal_path)
    app_state.registry = AuthorizationRegistry(audit=app_state.audit)
    app_state.authenticator = RequestAuthenticator(app_state.directory, config.SIGNATURE_MAX_SKEW_SECONDS)

    logger.info(
        "MedVault started on http://%s:%s (%d audit entries loaded)",
        config.HOST, config.PORT, len(app_state.audit),
    )

    yield

    logger.info("MedVault stopped")


# Create FastAPI app
app = FastAPI(
    title="MedVault",
    description="Emergency access registry for encrypted medical records",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when allow_origins is "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Error Mapping
# ============================================================================

ERROR_STATUS: dict[type, int] = {
    NotOwner: 403,
    AccessDenied: 403,
    RecordNotFound: 404,
    UnknownIdentity: 404,
    KeyAlreadyRegistered: 409,
}


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    status_code = next(
        (status for error_type, status in ERROR_STATUS.items() if isinstance(exc, error_type)),
        400,
    )
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.message})


@app.exception_handler(CryptoError)
async def crypto_error_handler(request: Request, exc: CryptoError):
    return JSONResponse(status_code=400, content={"error": "CRYPTO_ERROR", "detail": str(exc)})


# ============================================================================
# Request Helpers
# ============================================================================

async def authenticated_caller(request: Request) -> str:
    """Dependency: verify the request signature and return the caller's identity."""
    body = await request.body()
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"

    try:
        return app_state.authenticator.authenticate(
            request.headers.get(IDENTITY_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
            request.headers.get(SIGNATURE_HEADER),
            request.method,
            path,
            body,
        )
    except AuthenticationFailed as e:
        raise HTTPException(status_code=401, detail=str(e))


def require_owner(caller: str, owner: str) -> None:
    if caller != owner:
        raise NotOwner(f"{caller} cannot change {owner}'s record")


async def read_json(request: Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def decode_hex(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{name} must be a hex string")
    try:
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} is not valid hex")


def string_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise HTTPException(status_code=400, detail=f"{name} must be a list of strings")
    return value


def event_payload(event) -> dict[str, Any]:
    return {"kind": event.kind, **event.to_dict()}


# ============================================================================
# Identity Directory
# ============================================================================

@app.post("/api/identities")
async def register_identity(request: Request):
    """Bind an identity to its public key; the proof signature is the only credential."""
    data = await read_json(request)
    identity = data.get("identity", "")
    public_key = decode_hex(data.get("public_key", ""), "public_key")
    proof = decode_hex(data.get("proof", ""), "proof")

    compressed = app_state.directory.register(identity, public_key, proof)
    return {"identity": identity, "public_key": compressed.hex()}


@app.get("/api/identities/{identity}")
async def get_identity(identity: str):
    return {"identity": identity, "public_key": app_state.directory.public_key_bytes(identity).hex()}


# ============================================================================
# Records
# ============================================================================

@app.put("/api/records/{owner}")
async def upload_record(owner: str, request: Request, caller: str = Depends(authenticated_caller)):
    """
    Register or replace the caller's record pointer.

    With ``wrapped_keys`` ({recipient: hex}), current grants are re-keyed in
    the same step and grants without a new key are revoked.
    """
    require_owner(caller, owner)
    data = await read_json(request)
    content_reference = data.get("content_reference", "")

    if "wrapped_keys" not in data:
        event = app_state.registry.upload_record(caller, content_reference)
        return {"event": event_payload(event), "events": [event_payload(event)]}

    wrapped_keys = data["wrapped_keys"]
    if not isinstance(wrapped_keys, dict):
        raise HTTPException(status_code=400, detail="wrapped_keys must be an object")
    events = app_state.registry.replace_record(
        caller,
        content_reference,
        {recipient: decode_hex(value, "wrapped_keys") for recipient, value in wrapped_keys.items()},
    )
    return {"event": event_payload(events[0]), "events": [event_payload(event) for event in events]}


@app.get("/api/records/{owner}/exists")
async def record_exists(owner: str, caller: str = Depends(authenticated_caller)):
    return {"owner": owner, "exists": app_state.registry.has_record(owner)}


@app.get("/api/records/{owner}")
async def get_record_reference(owner: str, caller: str = Depends(authenticated_caller)):
    """Return the content reference to an authorized caller. Every call is audited."""
    reference = app_state.registry.get_record_reference(caller, owner)
    return {"owner": owner, "content_reference": reference}


@app.get("/api/records/{owner}/wrapped-key")
async def get_wrapped_key(owner: str, caller: str = Depends(authenticated_caller)):
    wrapped_key = app_state.registry.get_wrapped_key(caller, owner)
    return {"owner": owner, "recipient": caller, "wrapped_key": wrapped_key.hex()}


# ============================================================================
# Grants
# ============================================================================

@app.get("/api/records/{owner}/grants")
async def list_grants(owner: str, caller: str = Depends(authenticated_caller)):
    require_owner(caller, owner)
    return {"owner": owner, "recipients": app_state.registry.granted_recipients(owner)}


@app.post("/api/records/{owner}/grants")
async def grant_access(owner: str, request: Request, caller: str = Depends(authenticated_caller)):
    require_owner(caller, owner)
    data = await read_json(request)
    event = app_state.registry.grant_access(
        caller,
        data.get("recipient", ""),
        decode_hex(data.get("wrapped_key", ""), "wrapped_key"),
    )
    return {"event": event_payload(event)}


@app.post("/api/records/{owner}/grants/batch")
async def batch_grant_access(owner: str, request: Request, caller: str = Depends(authenticated_caller)):
    """Grant several recipients at once; the whole batch succeeds or nothing changes."""
    require_owner(caller, owner)
    data = await read_json(request)
    recipients = string_list(data.get("recipients", []), "recipients")
    wrapped_keys = [
        decode_hex(value, "wrapped_keys")
        for value in string_list(data.get("wrapped_keys", []), "wrapped_keys")
    ]
    events = app_state.registry.batch_grant_access(caller, recipients, wrapped_keys)
    return {"events": [event_payload(event) for event in events]}


@app.delete("/api/records/{owner}/grants/{recipient}")
async def revoke_access(owner: str, recipient: str, caller: str = Depends(authenticated_caller)):
    require_owner(caller, owner)
    event = app_state.registry.revoke_access(caller, recipient)
    return {"changed": event is not None, "event": event_payload(event) if event else None}


@app.post("/api/records/{owner}/grants/revoke-batch")
async def batch_revoke_access(owner: str, request: Request, caller: str = Depends(authenticated_caller)):
    require_owner(caller, owner)
    data = await read_json(request)
    events = app_state.registry.batch_revoke_access(
        caller, string_list(data.get("recipients", []), "recipients")
    )
    return {"events": [event_payload(event) for event in events]}


@app.get("/api/access/{owner}/{accessor}")
async def check_access(owner: str, accessor: str):
    """Pure permission check; not audited."""
    return {"owner": owner, "accessor": accessor, "allowed": app_state.registry.check_access(owner, accessor)}


# ============================================================================
# Audit Trail
# ============================================================================

@app.get("/api/audit")
async def query_audit(
    kind: Optional[str] = None,
    owner: Optional[str] = None,
    party: Optional[str] = None,
    since: Optional[int] = None,
    until: Optional[int] = None,
    caller: str = Depends(authenticated_caller),
):
    entries = app_state.audit.query(kind=kind, owner=owner, party=party, since=since, until=until)
    return {"count": len(entries), "entries": [entry.to_dict() for entry in entries]}


@app.get("/api/audit/verify")
async def verify_audit():
    return asdict(app_state.audit.verify_chain())


@app.get("/api/version")
async def get_version():
    return {"name": "MedVault", "version": __version__}


# ============================================================================
# Main Entry Point
# ============================================================================

def run() -> None:
    """Start the service with uvicorn."""
    import uvicorn

    configure_logging(
        level=config.LOG_LEVEL,
        json_format=config.LOG_JSON,
        log_file=str(config.logs_dir / "medvault.log"),
    )
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
