"""Инбаунды: создание, правка, вкл/выкл, удаление. Проверки до записи, reload после коммита."""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.crud import find_reality_donor, get_inbound, port_taken, soft_delete, tag_taken
from db.models import InboundDefinition
from services.exceptions import BuiltinInboundError, ConflictError, InboundValidationError, NotFoundError
from services.reload import ReloadOutcome, apply_config
from services.validator import check_inbound, normalize_inbound

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "tag",
    "display_name",
    "protocol",
    "listen_port",
    "tls_type",
    "sni",
    "cert_path",
    "key_path",
    "transport",
    "service_name",
    "user_type",
    "flow",
    "multiplex",
    "enabled",
    "sort_order",
    "server_address",
    "reality_private_key",
    "reality_public_key",
    "reality_short_ids",
    "fingerprint",
)

_DEFAULTS = {
    "display_name": "",
    "listen_port": 0,
    "tls_type": "",
    "sni": "",
    "cert_path": "",
    "key_path": "",
    "transport": "",
    "service_name": "",
    "user_type": "",
    "flow": "",
    "multiplex": False,
    "enabled": True,
    "sort_order": 0,
    "server_address": "",
    "reality_private_key": "",
    "reality_public_key": "",
    "reality_short_ids": [],
    "fingerprint": "",
}


def inbound_fields(inbound: InboundDefinition) -> dict:
    return {field: getattr(inbound, field) for field in EDITABLE_FIELDS}


def _require(db: Session, inbound_id: int) -> InboundDefinition:
    inbound = get_inbound(db, inbound_id)
    if not inbound:
        raise NotFoundError("Inbound", inbound_id)
    return inbound


def _check_unique(db: Session, candidate: dict, exclude_id: int | None = None) -> None:
    if tag_taken(db, candidate["tag"], exclude_id):
        raise ConflictError("Tag already exists")
    if port_taken(db, candidate["listen_port"], exclude_id):
        raise ConflictError("Port already in use")


def _commit(db: Session) -> None:
    # частичные уникальные индексы ловят гонку двух одновременных создателей
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Tag or port already in use") from e


def create_inbound(db: Session, data: dict) -> tuple[InboundDefinition, ReloadOutcome]:
    candidate = dict(_DEFAULTS)
    candidate.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
    candidate = normalize_inbound(candidate)

    if not candidate.get("tag"):
        raise InboundValidationError("Tag is required")
    check_inbound(candidate)
    _check_unique(db, candidate)

    # Reality без ключей: берём ключи у существующего Reality-инбаунда
    if candidate["tls_type"] == "reality" and not candidate["reality_private_key"]:
        donor = find_reality_donor(db)
        if donor:
            candidate["reality_private_key"] = donor.reality_private_key
            candidate["reality_public_key"] = donor.reality_public_key
            candidate["reality_short_ids"] = list(donor.reality_short_ids or [])
            logger.info("Inbound %s: Reality keys copied from %s", candidate["tag"], donor.tag)

    inbound = InboundDefinition(is_builtin=False, **candidate)
    db.add(inbound)
    _commit(db)
    db.refresh(inbound)
    logger.info("Inbound created: id=%s tag=%s port=%s", inbound.id, inbound.tag, inbound.listen_port)
    return inbound, apply_config(db)


def update_inbound(db: Session, inbound_id: int, data: dict) -> tuple[InboundDefinition, ReloadOutcome]:
    """
    Частичная правка: переданные поля накладываются на текущую запись,
    и проверяется уже итоговый кандидат. is_builtin не меняется.
    """
    inbound = _require(db, inbound_id)
    candidate = inbound_fields(inbound)
    candidate.update({k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
    candidate = normalize_inbound(candidate)

    if not candidate.get("tag"):
        raise InboundValidationError("Tag is required")
    check_inbound(candidate)
    _check_unique(db, candidate, exclude_id=inbound.id)

    for field, value in candidate.items():
        setattr(inbound, field, value)
    _commit(db)
    db.refresh(inbound)
    logger.info("Inbound updated: id=%s tag=%s", inbound.id, inbound.tag)
    return inbound, apply_config(db)


def toggle_inbound(db: Session, inbound_id: int) -> tuple[InboundDefinition, ReloadOutcome]:
    inbound = _require(db, inbound_id)
    inbound.enabled = not inbound.enabled
    db.commit()
    db.refresh(inbound)
    logger.info("Inbound %s %s", inbound.tag, "enabled" if inbound.enabled else "disabled")
    return inbound, apply_config(db)


def delete_inbound(db: Session, inbound_id: int) -> ReloadOutcome:
    inbound = _require(db, inbound_id)
    if inbound.is_builtin:
        raise BuiltinInboundError(inbound.tag)
    soft_delete(db, inbound)
    db.commit()
    logger.info("Inbound deleted: id=%s tag=%s", inbound.id, inbound.tag)
    return apply_config(db)
