"""
API routes for k-shot device trust.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..auth.credentials import TOKEN_FILE_NAME
from ..context import TrustContext
from ..errors import (
    AuthError,
    CredentialCorrupt,
    CredentialMissing,
    UnknownToken,
)
from ..registry.identities import Identity
from .server import error_body

logger = logging.getLogger(__name__)

router = APIRouter()

# Failures that send the user to re-provisioning rather than a hard deny
RECOVERABLE_AUTH_ERRORS = (CredentialMissing, CredentialCorrupt, UnknownToken)


# ============ Request/Response Models ============

class TokenInfo(BaseModel):
    """A registry row as shown to administrators."""
    token: str
    device_label: Optional[str] = None
    issued_at: str
    last_used: Optional[str] = None
    status: str


class TokenListResponse(BaseModel):
    success: bool = True
    tokens: List[TokenInfo]


class ReissueRequest(BaseModel):
    """Request to reissue a device token."""
    device_label: Optional[str] = Field(default=None, description="Label for the new device")
    revoke_existing: bool = Field(default=True, description="Revoke all other active tokens")


class ReissueResponse(BaseModel):
    success: bool = True
    token: str
    device_token_file: Dict[str, Any]
    message: str = "Device token reissued"


class ImportRequest(BaseModel):
    """Credential file content transferred from an administrator."""
    device_token_file: Dict[str, Any]


# ============ Dependencies ============

def get_context(request: Request) -> TrustContext:
    context = request.app.state.context
    if context is None:
        raise HTTPException(status_code=503, detail="Registry not available")
    return context


def require_admin(ctx: TrustContext = Depends(get_context)) -> Identity:
    """Resolve the calling device and require the admin role."""
    try:
        identity_id = ctx.gate.resolve()
    except AuthError as e:
        raise HTTPException(status_code=401, detail=e.code)
    identity = ctx.identities.get(identity_id)
    if identity is None or not identity.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return identity


# ============ Routes ============

@router.get("/auth")
def authenticate(ctx: TrustContext = Depends(get_context)):
    """Resolve the identity bound to this device."""
    try:
        identity_id = ctx.gate.resolve()
    except RECOVERABLE_AUTH_ERRORS as e:
        # 200 so the front end can redirect to the setup screen
        return {
            "success": False,
            "error": "DEVICE_TOKEN_REQUIRED",
            "reason": e.code,
        }
    except AuthError as e:
        return JSONResponse(status_code=403, content=error_body(e))

    identity = ctx.identities.get(identity_id)
    return {
        "success": True,
        "identity_id": identity_id,
        "identity": identity.to_dict() if identity else None,
    }


@router.get("/setup/check")
def setup_check(ctx: TrustContext = Depends(get_context)):
    """Report credential and setup state of this device."""
    return {
        "success": True,
        "initialized": ctx.identities.count() > 0,
        "token_status": ctx.gate.check().to_dict(),
        "device_setup_completed": ctx.setup_flag.is_completed(),
        "uses_development_secret": ctx.signer.is_insecure,
    }


@router.post("/setup/bootstrap", status_code=201)
def bootstrap_user(ctx: TrustContext = Depends(get_context)):
    """Create the first identity and its credential (empty store only)."""
    result = ctx.bootstrapper.bootstrap()
    return {
        "success": True,
        "identity_id": result.identity.identity_id,
        "message": "Initial identity and device token issued",
    }


@router.get("/users/{identity_id}/device-tokens", response_model=TokenListResponse)
def list_device_tokens(
    identity_id: str,
    ctx: TrustContext = Depends(get_context),
    admin: Identity = Depends(require_admin),
):
    """List an identity's device tokens, newest first."""
    tokens = ctx.admin.list_tokens(identity_id)
    return TokenListResponse(tokens=[
        TokenInfo(
            token=t.token,
            device_label=t.device_label,
            issued_at=t.issued_at,
            last_used=t.last_used,
            status=t.status,
        )
        for t in tokens
    ])


@router.delete("/users/{identity_id}/device-tokens/{token}")
def revoke_device_token(
    identity_id: str,
    token: str,
    ctx: TrustContext = Depends(get_context),
    admin: Identity = Depends(require_admin),
):
    """Revoke one of an identity's tokens."""
    ctx.admin.revoke_token(identity_id, token)
    logger.info(f"Admin {admin.identity_id} revoked a token of {identity_id}")
    return {"success": True, "message": "Device token revoked"}


@router.post("/users/{identity_id}/device-tokens/reissue", response_model=ReissueResponse)
def reissue_device_token(
    identity_id: str,
    body: Optional[ReissueRequest] = None,
    ctx: TrustContext = Depends(get_context),
    admin: Identity = Depends(require_admin),
):
    """Issue a replacement credential for transfer to the target device."""
    body = body or ReissueRequest()
    credential = ctx.admin.reissue_token(
        identity_id,
        device_label=body.device_label,
        revoke_existing=body.revoke_existing,
    )
    logger.info(f"Admin {admin.identity_id} reissued a token for {identity_id}")
    return ReissueResponse(token=credential.token, device_token_file=credential.to_dict())


@router.get("/users/{identity_id}/device-tokens/download")
def download_device_token(
    identity_id: str,
    token: str = Query(..., description="Token whose credential file to download"),
    ctx: TrustContext = Depends(get_context),
    admin: Identity = Depends(require_admin),
):
    """Download the credential file for one token."""
    credential = ctx.admin.export_credential(identity_id, token)
    return Response(
        content=credential.to_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{TOKEN_FILE_NAME}"'},
    )


@router.post("/users/device-tokens/import")
def import_device_token(body: ImportRequest, ctx: TrustContext = Depends(get_context)):
    """
    Install a transferred credential on this device.

    No authentication: this runs during setup, before the device has a
    credential. The signature and registry checks are the protection.
    """
    credential = ctx.admin.import_credential(body.device_token_file)
    return {
        "success": True,
        "identity_id": credential.identity_id,
        "message": "Credential imported",
    }
