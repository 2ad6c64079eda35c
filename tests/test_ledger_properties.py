# Overview: Seeded random operation histories replayed against a plain-Python model of one card.

"""
Ledger Property Tests

Each seed drives a random mix of purchases, returns, transactions and
withdrawals on one card. After every step the persisted balance and item
statuses must match a small in-memory model, the balance must stay
non-negative and no definition may be held above its cap.
"""

import random

import pytest

from stampwallet.errors import (
    AboveMaxAmount,
    ItemAlreadyTerminal,
    NotEnoughPoints,
    Withdrawn,
)
from stampwallet.models.items import (
    ITEM_STATUS_OWNED,
    ITEM_STATUS_RETURNED,
    ITEM_STATUS_USED,
    ITEM_STATUS_WITHDRAWN,
)
from stampwallet.models.transactions import ACTION_CANCELLED, ACTION_RECALLED, ACTION_REDEEMED


STARTING_POINTS = 100
OPERATIONS_PER_SEED = 40


class LedgerModel:
    """Expected state of one card: balance, item statuses and definition flags."""

    def __init__(self, balance, definitions):
        self.balance = balance
        # public_id -> {"price", "max_amount", "withdrawn"}
        self.definitions = definitions
        # item public_id -> [status, definition public_id]
        self.items = {}

    def owned(self, definition_id=None):
        return [
            item_id for item_id, (status, def_id) in self.items.items()
            if status == ITEM_STATUS_OWNED and (definition_id is None or def_id == definition_id)
        ]

    def buy_outcome(self, definition_id):
        definition = self.definitions[definition_id]
        if definition["withdrawn"]:
            return Withdrawn
        if self.balance < definition["price"]:
            return NotEnoughPoints
        cap = definition["max_amount"]
        if cap > 0 and len(self.owned(definition_id)) >= cap:
            return AboveMaxAmount
        return None

    def buy(self, item_id, definition_id):
        self.balance -= self.definitions[definition_id]["price"]
        self.items[item_id] = [ITEM_STATUS_OWNED, definition_id]

    def return_item(self, item_id):
        definition_id = self.items[item_id][1]
        self.items[item_id][0] = ITEM_STATUS_RETURNED
        self.balance += self.definitions[definition_id]["price"]

    def withdraw(self, definition_id):
        self.definitions[definition_id]["withdrawn"] = True
        for item_id in self.owned(definition_id):
            self.items[item_id][0] = ITEM_STATUS_WITHDRAWN
            self.balance += self.definitions[definition_id]["price"]

    def finalize(self, staged, actions, added_points):
        for item_id in staged:
            action = actions.get(item_id, ACTION_CANCELLED)
            status, definition_id = self.items[item_id]
            if action == ACTION_CANCELLED or status == ITEM_STATUS_WITHDRAWN:
                continue
            self.items[item_id][0] = ITEM_STATUS_USED
            if action == ACTION_RECALLED:
                self.balance += self.definitions[definition_id]["price"]
        self.balance += added_points


@pytest.fixture
def history(wallet, clock, user, business, make_card, make_definition):
    """Build a card, a small catalogue and the matching model for one seed."""
    def _build(rng):
        card = make_card(user, business, points=STARTING_POINTS)
        definitions = {}
        for index in range(3):
            definition = make_definition(
                business,
                name=f"Reward {index}",
                price=rng.randint(1, 15),
                max_amount=rng.randint(0, 3),
            )
            definitions[definition.public_id] = {
                "price": definition.price,
                "max_amount": definition.max_amount,
                "withdrawn": False,
                "row": definition,
            }
        return card, LedgerModel(STARTING_POINTS, definitions)

    return _build


def _assert_matches(wallet, card, model):
    assert card.points == model.balance
    assert card.points >= 0
    persisted = {item.public_id: item.status for item in wallet.virtual_cards.get_owned_items(card)}
    assert persisted == {item_id: status for item_id, (status, _) in model.items.items()}
    for definition_id, definition in model.definitions.items():
        if definition["max_amount"] > 0:
            assert len(model.owned(definition_id)) <= definition["max_amount"]


def _op_buy(wallet, rng, card, model):
    definition_id = rng.choice(sorted(model.definitions))
    expected = model.buy_outcome(definition_id)
    if expected is not None:
        with pytest.raises(expected):
            wallet.virtual_cards.buy_item(card, definition_id)
        return
    item = wallet.virtual_cards.buy_item(card, definition_id)
    model.buy(item.public_id, definition_id)


def _op_return(wallet, rng, card, model):
    if not model.items:
        return
    item_id = rng.choice(sorted(model.items))
    item = wallet.virtual_cards.filter_owned_items(card, [item_id])[0]
    if model.items[item_id][0] != ITEM_STATUS_OWNED:
        with pytest.raises(ItemAlreadyTerminal):
            wallet.virtual_cards.return_item(item)
        return
    wallet.virtual_cards.return_item(item)
    model.return_item(item_id)


def _op_transaction(wallet, rng, card, model):
    owned = model.owned()
    staged = rng.sample(owned, rng.randint(0, len(owned))) if owned else []
    tx = wallet.transactions.start(card, staged)

    # Sometimes the catalogue changes under a staged transaction
    live_definitions = [d for d, v in model.definitions.items() if not v["withdrawn"]]
    if live_definitions and rng.random() < 0.2:
        definition_id = rng.choice(sorted(live_definitions))
        wallet.item_definitions.withdraw_item(model.definitions[definition_id]["row"])
        model.withdraw(definition_id)

    if rng.random() < 0.2:
        wallet.transactions.cancel(tx)
        return

    actions = {}
    for item_id in staged:
        choice = rng.choice([ACTION_REDEEMED, ACTION_RECALLED, ACTION_CANCELLED, None])
        if choice is not None:
            actions[item_id] = choice
    added_points = rng.randint(0, 20)
    wallet.transactions.finalize(tx, actions, added_points)
    model.finalize(staged, actions, added_points)


def _op_withdraw(wallet, rng, card, model):
    definition_id = rng.choice(sorted(model.definitions))
    definition = model.definitions[definition_id]
    if definition["withdrawn"]:
        with pytest.raises(Withdrawn):
            wallet.item_definitions.withdraw_item(definition["row"])
        return
    wallet.item_definitions.withdraw_item(definition["row"])
    model.withdraw(definition_id)


# Weighted so withdrawals stay rare enough for purchases to keep happening
OPERATIONS = [_op_buy] * 5 + [_op_return] * 2 + [_op_transaction] * 3 + [_op_withdraw]


class TestRandomHistories:
    @pytest.mark.parametrize("seed", range(8))
    def test_history_matches_model(self, wallet, history, seed):
        rng = random.Random(seed)
        card, model = history(rng)

        for _ in range(OPERATIONS_PER_SEED):
            operation = rng.choice(OPERATIONS)
            operation(wallet, rng, card, model)
            _assert_matches(wallet, card, model)

        assert wallet.transactions.get_active(card) is None
