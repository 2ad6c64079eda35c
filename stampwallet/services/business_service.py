# Overview: Service-layer operations for businesses; onboarding, details, menu images and search.

"""
Business Service

A user owns at most one business. Creating a business creates two file
stubs (banner and icon) owned by the user; menu images are further stubs,
capped per business by max_menu_images_per_business.

Regulatory identifiers (NIP, KRS, REGON) are unique across businesses.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import AlreadyExists, InvalidRequest, LimitExceeded, NotFound
from ..models import Business, FileMetadata, MenuImage, User
from . import store
from .file_storage_service import FileStorage
from .ledger import LedgerServices


DEFAULT_SEARCH_LIMIT = 50
MAX_SEARCH_LIMIT = 100


@dataclass
class BusinessDetails:
    name: str
    description: str
    address: str
    nip: str
    krs: str
    regon: str
    owner_name: str
    latitude: float | None = None
    longitude: float | None = None


def parse_gps_coordinates(value) -> tuple[float, float] | tuple[None, None]:
    """
    Parse "lat,lon". Empty or None -> (None, None).

    Raises InvalidRequest for malformed or out-of-range coordinates.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None, None
    if not isinstance(value, str):
        raise InvalidRequest("INVALID_GPS_COORDINATES")
    parts = value.split(",")
    if len(parts) != 2:
        raise InvalidRequest("INVALID_GPS_COORDINATES")
    try:
        latitude, longitude = float(parts[0]), float(parts[1])
    except ValueError:
        raise InvalidRequest("INVALID_GPS_COORDINATES")
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise InvalidRequest("INVALID_GPS_COORDINATES")
    return latitude, longitude


class BusinessManager:
    def __init__(self, services: LedgerServices, file_storage: FileStorage):
        self.services = services
        self.file_storage = file_storage
        self.logger = services.child_logger("businesses")

    def create(self, user: User, details: BusinessDetails, ctx=None) -> Business:
        """
        Raises:
            AlreadyExists: user already owns a business, or an identifier is taken
        """
        def _op():
            with store.transaction(ctx) as session:
                if store.find_live(Business, owner_id=user.id) is not None:
                    raise AlreadyExists("User already owns a business")
                taken = session.query(Business.id).filter(
                    (Business.nip == details.nip) | (Business.krs == details.krs) | (Business.regon == details.regon)
                ).first()
                if taken is not None:
                    raise AlreadyExists("Business identifiers already registered")

                banner = self.file_storage.create_stub(user.id)
                icon = self.file_storage.create_stub(user.id)
                business = Business(
                    owner_id=user.id,
                    name=details.name,
                    description=details.description,
                    address=details.address,
                    latitude=details.latitude,
                    longitude=details.longitude,
                    nip=details.nip,
                    krs=details.krs,
                    regon=details.regon,
                    owner_name=details.owner_name,
                    banner_image_id=banner.public_id,
                    icon_image_id=icon.public_id,
                )
                session.add(business)
                session.flush()
                self.logger.info("Business %s created by user %s", business.public_id, user.public_id)
                return business

        return store.run_with_retry(_op)

    def change_details(self, business: Business, name: str | None = None,
                       description: str | None = None, ctx=None) -> Business:
        if name is None and description is None:
            raise InvalidRequest("name or description is required")

        def _op():
            with store.transaction(ctx):
                locked = store.lock_live(Business, business.id)
                if locked is None:
                    raise NotFound("Business not found")
                if name is not None:
                    locked.name = name
                if description is not None:
                    locked.description = description
                self.logger.info("Business %s details changed", locked.public_id)
                return locked

        return store.run_with_retry(_op)

    # =========================================================================
    # MENU IMAGES
    # =========================================================================

    def add_menu_image(self, business: Business, ctx=None) -> MenuImage:
        """
        Create a menu image file stub.

        Raises:
            LimitExceeded: business already has max_menu_images_per_business images
        """
        limit = self.services.max_menu_images_per_business

        def _op():
            with store.transaction(ctx) as session:
                locked = store.lock_live(Business, business.id)
                if locked is None:
                    raise NotFound("Business not found")
                count = session.query(MenuImage).filter(MenuImage.business_id == locked.id).count()
                if count >= limit:
                    raise LimitExceeded(business=locked.public_id, limit=limit)

                stub = self.file_storage.create_stub(locked.owner_id)
                image = MenuImage(business_id=locked.id, file_id=stub.public_id)
                session.add(image)
                session.flush()
                self.logger.info("Menu image %s added to business %s", stub.public_id, locked.public_id)
                return image

        return store.run_with_retry(_op)

    def remove_menu_image(self, menu_image: MenuImage, ctx=None) -> None:
        def _op():
            with store.transaction(ctx) as session:
                image = session.query(MenuImage).filter(MenuImage.id == menu_image.id).first()
                if image is None:
                    raise NotFound("Menu image not found")
                meta = store.find_live(FileMetadata, public_id=image.file_id)
                if meta is not None:
                    meta.deleted_at = self.services.now()
                session.delete(image)
                self.logger.info("Menu image %s removed", image.file_id)

        store.run_with_retry(_op)

    # =========================================================================
    # SEARCH
    # =========================================================================

    def search(self, text: str | None = None, offset: int = 0, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Business]:
        """Case-insensitive substring match on name and description."""
        if offset < 0 or limit < 0:
            raise InvalidRequest("offset and limit must be non-negative")
        limit = min(limit, MAX_SEARCH_LIMIT)

        query = store.live(Business)
        if text:
            pattern = f"%{text.strip()}%"
            query = query.filter(Business.name.ilike(pattern) | Business.description.ilike(pattern))
        return query.order_by(Business.name, Business.id).offset(offset).limit(limit).all()
