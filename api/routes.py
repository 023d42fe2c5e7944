"""Админские маршруты: аккаунты, инбаунды, reload, статистика."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import config
from api.auth import require_admin
from db.crud import account_stats, get_account, list_accounts, list_enabled_inbounds, list_inbounds
from db.models import Account, InboundDefinition
from db.session import get_session
from services import accounts as account_service
from services import inbounds as inbound_service
from services.exceptions import (
    AccountValidationError,
    BuiltinInboundError,
    ConflictError,
    FleetManagerError,
    InboundValidationError,
    NotFoundError,
)
from services.links import build_links
from services.reload import ReloadOutcome, ReloadStatus, apply_config
from services.sni_check import validate_reality_sni
from services.validator import inbound_rules

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(require_admin)])


def get_db():
    db = get_session()
    try:
        yield db
    finally:
        db.close()


def http_error(e: FleetManagerError) -> HTTPException:
    if isinstance(e, (InboundValidationError, AccountValidationError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, BuiltinInboundError):
        return HTTPException(status_code=403, detail=str(e))
    logger.exception("Unexpected service error")
    return HTTPException(status_code=500, detail=str(e))


def account_to_dict(account: Account) -> dict:
    return {
        "id": account.id,
        "uuid": account.uuid,
        "username": account.username,
        "telegram_id": account.telegram_id,
        "telegram_username": account.telegram_username,
        "status": account.status,
        "traffic_limit": account.traffic_limit,
        "traffic_used": account.traffic_used,
        "subscription_token": account.subscription_token,
        "created_at": account.created_at.isoformat() if account.created_at else None,
    }


def inbound_to_dict(inbound: InboundDefinition) -> dict:
    data = inbound_service.inbound_fields(inbound)
    data.pop("reality_private_key")  # только на запись
    data["id"] = inbound.id
    data["is_builtin"] = inbound.is_builtin
    data["has_private_key"] = bool(inbound.reality_private_key)
    return data


def outcome_to_dict(outcome: ReloadOutcome | None) -> dict | None:
    if outcome is None:
        return None
    return {"status": outcome.status.value, "error": outcome.error}


class CreateAccountRequest(BaseModel):
    username: str
    telegram_id: int = 0
    telegram_username: str | None = None
    traffic_limit: int = Field(0, ge=0)


class StatusRequest(BaseModel):
    status: str


class LimitRequest(BaseModel):
    limit: int = Field(..., ge=0)  # байт, 0 = безлимит


class InboundRequest(BaseModel):
    tag: str | None = None
    display_name: str | None = None
    protocol: str | None = None
    listen_port: int | None = None
    tls_type: str | None = None
    sni: str | None = None
    cert_path: str | None = None
    key_path: str | None = None
    transport: str | None = None
    service_name: str | None = None
    user_type: str | None = None
    flow: str | None = None
    multiplex: bool | None = None
    enabled: bool | None = None
    sort_order: int | None = None
    server_address: str | None = None
    reality_private_key: str | None = None
    reality_public_key: str | None = None
    reality_short_ids: list[str] | None = None
    fingerprint: str | None = None


@router.get("/accounts")
def get_accounts(db: Session = Depends(get_db)):
    return [account_to_dict(a) for a in list_accounts(db)]


@router.post("/accounts", status_code=201)
def create_account(body: CreateAccountRequest, db: Session = Depends(get_db)):
    try:
        account, outcome = account_service.create_account(
            db,
            username=body.username,
            telegram_id=body.telegram_id,
            telegram_username=body.telegram_username,
            traffic_limit=body.traffic_limit,
        )
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"account": account_to_dict(account), "reload": outcome_to_dict(outcome)}


@router.put("/accounts/{account_id}/status")
def update_account_status(account_id: int, body: StatusRequest, db: Session = Depends(get_db)):
    try:
        account, outcome = account_service.update_status(db, account_id, body.status.strip())
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"account": account_to_dict(account), "reload": outcome_to_dict(outcome)}


@router.put("/accounts/{account_id}/limit")
def update_account_limit(account_id: int, body: LimitRequest, db: Session = Depends(get_db)):
    try:
        account, outcome = account_service.update_limit(db, account_id, body.limit)
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"account": account_to_dict(account), "reload": outcome_to_dict(outcome)}


@router.delete("/accounts/{account_id}")
def delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        outcome = account_service.delete_account(db, account_id)
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"message": "Account deleted", "reload": outcome_to_dict(outcome)}


@router.get("/accounts/{account_id}/links")
def get_account_links(account_id: int, db: Session = Depends(get_db)):
    account = get_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return {"links": build_links(list_enabled_inbounds(db), account, config.SERVER_ADDRESS)}


@router.get("/inbounds")
def get_inbounds(db: Session = Depends(get_db)):
    return [inbound_to_dict(i) for i in list_inbounds(db)]


@router.get("/inbounds/rules")
def get_inbound_rules():
    return inbound_rules()


@router.get("/inbounds/validate-sni")
def validate_sni(domain: str = ""):
    """Годится ли домен для Reality (TLS 1.3 + h2). Ходит в сеть, не трогает БД."""
    domain = domain.strip()
    if not domain:
        raise HTTPException(status_code=400, detail="domain query parameter is required")
    return {"domain": domain, "valid": validate_reality_sni(domain)}


@router.post("/inbounds", status_code=201)
def create_inbound(body: InboundRequest, db: Session = Depends(get_db)):
    try:
        inbound, outcome = inbound_service.create_inbound(db, body.model_dump(exclude_none=True))
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"inbound": inbound_to_dict(inbound), "reload": outcome_to_dict(outcome)}


@router.put("/inbounds/{inbound_id}")
def update_inbound(inbound_id: int, body: InboundRequest, db: Session = Depends(get_db)):
    try:
        inbound, outcome = inbound_service.update_inbound(db, inbound_id, body.model_dump(exclude_none=True))
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"inbound": inbound_to_dict(inbound), "reload": outcome_to_dict(outcome)}


@router.put("/inbounds/{inbound_id}/toggle")
def toggle_inbound(inbound_id: int, db: Session = Depends(get_db)):
    try:
        inbound, outcome = inbound_service.toggle_inbound(db, inbound_id)
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"inbound": inbound_to_dict(inbound), "reload": outcome_to_dict(outcome)}


@router.delete("/inbounds/{inbound_id}")
def delete_inbound(inbound_id: int, db: Session = Depends(get_db)):
    try:
        outcome = inbound_service.delete_inbound(db, inbound_id)
    except FleetManagerError as e:
        raise http_error(e) from e
    return {"message": "Inbound deleted", "reload": outcome_to_dict(outcome)}


@router.post("/reload")
def reload_config(db: Session = Depends(get_db)):
    outcome = apply_config(db)
    if outcome.status is ReloadStatus.WRITE_FAILED:
        raise HTTPException(status_code=500, detail={"error": "Failed to write config", "details": outcome.error})
    return {"message": "Config generated", "reload": outcome_to_dict(outcome)}


@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    return account_stats(db)
