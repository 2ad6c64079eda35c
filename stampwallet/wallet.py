# Overview: Per-application bundle wiring the ledger managers, accessors and adapters together.

from __future__ import annotations

from dataclasses import dataclass

from .services.accessors import BusinessAuthorizedAccessor, TransactionAccessor, UserAuthorizedAccessor
from .services.business_service import BusinessManager
from .services.email_service import EmailService
from .services.file_storage_service import FileStorage
from .services.item_definition_service import ItemDefinitionManager
from .services.ledger import LedgerServices
from .services.transaction_service import TransactionManager
from .services.virtual_card_service import VirtualCardManager


@dataclass
class Wallet:
    services: LedgerServices
    file_storage: FileStorage
    email: EmailService
    user_accessor: UserAuthorizedAccessor
    business_accessor: BusinessAuthorizedAccessor
    transaction_accessor: TransactionAccessor
    item_definitions: ItemDefinitionManager
    virtual_cards: VirtualCardManager
    transactions: TransactionManager
    businesses: BusinessManager


def build_wallet(config, services: LedgerServices | None = None) -> Wallet:
    services = services or LedgerServices.from_config(config)
    file_storage = FileStorage.from_config(config)
    transaction_accessor = TransactionAccessor()
    return Wallet(
        services=services,
        file_storage=file_storage,
        email=EmailService.from_config(config),
        user_accessor=UserAuthorizedAccessor(),
        business_accessor=BusinessAuthorizedAccessor(),
        transaction_accessor=transaction_accessor,
        item_definitions=ItemDefinitionManager(services, file_storage),
        virtual_cards=VirtualCardManager(services),
        transactions=TransactionManager(services, transaction_accessor),
        businesses=BusinessManager(services, file_storage),
    )
