"""Router exposing network access provisioning for client accounts."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import get_db
from ..dependencies import get_access_server
from ..services import (
    AccessServerClient,
    NetworkAccessProvisioner,
    NotFoundError,
    ProvisioningResult,
)

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _to_response(result: ProvisioningResult) -> schemas.ProvisioningResponse:
    bandwidth = None
    if result.bandwidth is not None:
        bandwidth = schemas.BandwidthRead(
            download_kbps=result.bandwidth.download_kbps,
            upload_kbps=result.bandwidth.upload_kbps,
            is_default=result.bandwidth.is_default,
        )
    return schemas.ProvisioningResponse(
        client_id=result.client_id,
        action=result.action,
        subscription_status=result.subscription_status,
        is_active=result.is_active,
        sync_requested=result.pushed,
        bandwidth=bandwidth,
        error=result.error,
        audit_entry_id=result.audit_entry_id,
    )


def _provisioner(
    db: Session = Depends(get_db),
    access_server: AccessServerClient = Depends(get_access_server),
) -> NetworkAccessProvisioner:
    return NetworkAccessProvisioner(db, access_server)


@router.post("/{client_id}/connect", response_model=schemas.ProvisioningResponse)
def connect_client(
    client_id: str,
    provisioner: NetworkAccessProvisioner = Depends(_provisioner),
) -> schemas.ProvisioningResponse:
    try:
        result = provisioner.connect(client_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(result)


@router.post("/{client_id}/disconnect", response_model=schemas.ProvisioningResponse)
def disconnect_client(
    client_id: str,
    provisioner: NetworkAccessProvisioner = Depends(_provisioner),
) -> schemas.ProvisioningResponse:
    try:
        result = provisioner.disconnect(client_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(result)


@router.post("/{client_id}/qos", response_model=schemas.ProvisioningResponse)
def update_client_qos(
    client_id: str,
    provisioner: NetworkAccessProvisioner = Depends(_provisioner),
) -> schemas.ProvisioningResponse:
    """Re-apply the client's package bandwidth and timeouts to its credential."""

    try:
        result = provisioner.update_qos(client_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(result)


@router.get("/{client_id}", response_model=schemas.NetworkCredentialRead)
def get_client_credential(
    client_id: str, db: Session = Depends(get_db)
) -> schemas.NetworkCredentialRead:
    credential = (
        db.query(models.NetworkCredential)
        .filter(models.NetworkCredential.client_id == client_id)
        .one_or_none()
    )
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Network credential not found"
        )
    return schemas.NetworkCredentialRead.model_validate(credential)
