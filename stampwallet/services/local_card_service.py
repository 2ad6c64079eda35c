# Overview: Service-layer operations for local cards; third-party loyalty barcodes kept in the wallet.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from ..errors import AlreadyExists, InvalidRequest, NotFound
from ..models import LocalCard, User
from ..time_utils import utcnow
from . import store


logger = logging.getLogger(__name__)


CODE_TYPE_EAN13 = "ean13"
CODE_TYPE_QR = "qr"


@dataclass(frozen=True)
class CardType:
    public_id: str
    name: str
    code: str
    image_url: str


CARD_TYPES = (
    CardType("biedronka", "Moja Biedronka", CODE_TYPE_EAN13, "biedronka.png"),
    CardType("kaufland", "Kaufland Card", CODE_TYPE_QR, "kaufland.png"),
)


def get_card_types(base_url: str = "") -> list[dict]:
    """Card type catalogue with image urls resolved against base_url."""
    result = []
    for card_type in CARD_TYPES:
        data = asdict(card_type)
        data["image_url"] = base_url + card_type.image_url
        result.append(data)
    return result


def find_card_type(public_id: str) -> CardType | None:
    for card_type in CARD_TYPES:
        if card_type.public_id == public_id:
            return card_type
    return None


def create_local_card(user: User, card_type: str, code: str, name: str = "", ctx=None) -> LocalCard:
    """
    Raises:
        InvalidRequest: unknown card type or empty code
        AlreadyExists: user already stores this (type, code)
    """
    if find_card_type(card_type) is None:
        raise InvalidRequest("INVALID_CARD_TYPE")
    if not isinstance(code, str) or not code.strip():
        raise InvalidRequest("code is required")

    def _op():
        with store.transaction(ctx) as session:
            if store.find_live(LocalCard, owner_id=user.id, type=card_type, code=code) is not None:
                raise AlreadyExists("Local card already exists")
            card = LocalCard(owner_id=user.id, type=card_type, code=code, name=name or "")
            session.add(card)
            session.flush()
            logger.info("Local card %s (%s) created", card.public_id, card_type)
            return card

    return store.run_with_retry(_op)


def remove_local_card(card: LocalCard, ctx=None) -> None:
    def _op():
        with store.transaction(ctx):
            locked = store.lock_live(LocalCard, card.id)
            if locked is None:
                raise NotFound("Local card not found")
            locked.deleted_at = utcnow()
            logger.info("Local card %s removed", locked.public_id)

    store.run_with_retry(_op)
