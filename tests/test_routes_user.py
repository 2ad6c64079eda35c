# Overview: Pytest coverage for the card holder API; virtual cards, purchases, transactions, local cards and search.

"""
User Route Tests

Virtual cards are addressed by their business's public id. Every route
only ever sees the caller's own cards and items.
"""

import pytest

from tests.conftest import auth_headers


@pytest.fixture
def headers(user):
    return auth_headers(user)


@pytest.fixture
def card(user, business, make_card):
    return make_card(user, business, points=40)


@pytest.fixture
def definition(business, make_definition):
    return make_definition(business, price=10)


def _card_url(business, suffix=''):
    return f'/user/cards/virtual/{business.public_id}{suffix}'


class TestVirtualCardRoutes:
    def test_create_and_list(self, client, business, headers):
        resp = client.post(_card_url(business), headers=headers)

        assert resp.status_code == 201
        created = resp.get_json()['virtual_card']
        assert created['points'] == 0
        assert created['business']['public_id'] == business.public_id

        listed = client.get('/user/cards', headers=headers).get_json()
        assert [c['public_id'] for c in listed['virtual_cards']] == [created['public_id']]
        assert listed['local_cards'] == []

    def test_create_twice(self, client, business, card, headers):
        resp = client.post(_card_url(business), headers=headers)
        assert resp.status_code == 409

    def test_unknown_business(self, client, db_session, headers):
        assert client.post('/user/cards/virtual/missing', headers=headers).status_code == 404

    def test_get_card_details(self, client, wallet, business, card, definition, headers):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)

        resp = client.get(_card_url(business), headers=headers)

        assert resp.status_code == 200
        data = resp.get_json()['virtual_card']
        assert data['points'] == 30
        assert [i['public_id'] for i in data['owned_items']] == [item.public_id]
        assert data['owned_items'][0]['definition_id'] == definition.public_id
        assert [d['public_id'] for d in data['item_definitions']] == [definition.public_id]

    def test_other_users_card_invisible(self, client, business, card, make_user):
        resp = client.get(_card_url(business), headers=auth_headers(make_user()))
        assert resp.status_code == 404

    def test_remove(self, client, business, card, headers):
        assert client.delete(_card_url(business), headers=headers).status_code == 200
        assert client.get(_card_url(business), headers=headers).status_code == 404
        assert client.post(_card_url(business), headers=headers).status_code == 201

    def test_remove_with_active_transaction(self, client, wallet, business, card, headers):
        wallet.transactions.start(card, [])
        resp = client.delete(_card_url(business), headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'InUse'


class TestItemRoutes:
    def test_buy(self, client, business, card, definition, headers):
        resp = client.post(_card_url(business, f'/items/{definition.public_id}'), headers=headers)

        assert resp.status_code == 201
        item = resp.get_json()['item']
        assert item['status'] == 'OWNED'
        assert item['used_at'] is None
        assert card.points == 30

    def test_buy_unavailable(self, client, wallet, business, card, make_definition, headers):
        hidden = make_definition(business, name='Hidden', price=1, available=False)
        resp = client.post(_card_url(business, f'/items/{hidden.public_id}'), headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'Unavailable'

    def test_buy_above_cap(self, client, business, card, make_definition, headers):
        capped = make_definition(business, name='Capped', price=1, max_amount=1)
        url = _card_url(business, f'/items/{capped.public_id}')
        assert client.post(url, headers=headers).status_code == 201
        resp = client.post(url, headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'AboveMaxAmount'

    def test_buy_without_card(self, client, business, definition, headers):
        resp = client.post(_card_url(business, f'/items/{definition.public_id}'), headers=headers)
        assert resp.status_code == 404

    def test_return(self, client, wallet, business, card, definition, headers):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)

        resp = client.delete(_card_url(business, f'/items/{item.public_id}'), headers=headers)

        assert resp.status_code == 200
        assert resp.get_json()['item']['status'] == 'RETURNED'
        assert card.points == 40

        again = client.delete(_card_url(business, f'/items/{item.public_id}'), headers=headers)
        assert again.status_code == 400
        assert again.get_json()['message'] == 'ItemAlreadyTerminal'

    def test_return_through_wrong_card(self, client, wallet, user, business, card, definition,
                                       make_business, make_card, headers):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)
        other = make_business()
        make_card(user, other)

        resp = client.delete(_card_url(other, f'/items/{item.public_id}'), headers=headers)
        assert resp.status_code == 404
        assert card.points == 30

    def test_return_other_users_item(self, client, wallet, business, card, definition, make_user, make_card):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)
        stranger = make_user()
        make_card(stranger, business)

        resp = client.delete(_card_url(business, f'/items/{item.public_id}'), headers=auth_headers(stranger))
        assert resp.status_code == 403


class TestTransactionRoutes:
    def test_start_get_cancel(self, client, wallet, business, card, definition, headers):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)

        started = client.post(_card_url(business, '/transaction'), json={'item_ids': [item.public_id]}, headers=headers)
        assert started.status_code == 201
        tx = started.get_json()['transaction']
        assert tx['state'] == 'STARTED'
        assert len(tx['code']) == 10
        assert tx['items'] == [{
            'item_id': item.public_id,
            'item_definition_id': definition.public_id,
            'action': 'NONE',
            'requested_action': None,
        }]

        active = client.get(_card_url(business, '/transaction'), headers=headers)
        assert active.get_json()['transaction']['code'] == tx['code']

        cancelled = client.delete(_card_url(business, '/transaction'), headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.get_json()['transaction']['state'] == 'CANCELLED'
        assert cancelled.get_json()['transaction']['items'][0]['action'] == 'CANCELLED'

        assert client.get(_card_url(business, '/transaction'), headers=headers).status_code == 404
        assert client.delete(_card_url(business, '/transaction'), headers=headers).status_code == 404

    def test_start_without_body(self, client, business, card, headers):
        resp = client.post(_card_url(business, '/transaction'), headers=headers)
        assert resp.status_code == 201
        assert resp.get_json()['transaction']['items'] == []

    def test_already_active(self, client, business, card, headers):
        client.post(_card_url(business, '/transaction'), json={}, headers=headers)
        resp = client.post(_card_url(business, '/transaction'), json={}, headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'AlreadyActive'

    @pytest.mark.parametrize("item_ids, status", [
        ('not-a-list', 400),
        ([1, 2], 400),
        (['ghost'], 400),
    ])
    def test_invalid_item_ids(self, client, business, card, headers, item_ids, status):
        resp = client.post(_card_url(business, '/transaction'), json={'item_ids': item_ids}, headers=headers)
        assert resp.status_code == status

    def test_staged_item_cannot_be_returned(self, client, wallet, business, card, definition, headers):
        item = wallet.virtual_cards.buy_item(card, definition.public_id)
        client.post(_card_url(business, '/transaction'), json={'item_ids': [item.public_id]}, headers=headers)

        resp = client.delete(_card_url(business, f'/items/{item.public_id}'), headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'InUse'


class TestLocalCardRoutes:
    def test_create_list_remove(self, client, db_session, headers):
        resp = client.post('/user/cards/local', json={
            'type': 'biedronka',
            'code': '5901234123457',
            'name': 'Groceries',
        }, headers=headers)

        assert resp.status_code == 201
        created = resp.get_json()['local_card']
        assert created['type'] == 'biedronka'
        assert created['name'] == 'Groceries'

        listed = client.get('/user/cards/local', headers=headers).get_json()['local_cards']
        assert [c['public_id'] for c in listed] == [created['public_id']]

        assert client.delete(f"/user/cards/local/{created['public_id']}", headers=headers).status_code == 200
        assert client.get('/user/cards/local', headers=headers).get_json()['local_cards'] == []

    def test_duplicate(self, client, db_session, headers):
        payload = {'type': 'kaufland', 'code': 'QR-123'}
        assert client.post('/user/cards/local', json=payload, headers=headers).status_code == 201
        assert client.post('/user/cards/local', json=payload, headers=headers).status_code == 409

    def test_unknown_type(self, client, db_session, headers):
        resp = client.post('/user/cards/local', json={'type': 'lidl', 'code': '1'}, headers=headers)
        assert resp.status_code == 400
        assert resp.get_json()['message'] == 'INVALID_CARD_TYPE'

    def test_other_users_card(self, client, db_session, headers, make_user):
        created = client.post(
            '/user/cards/local', json={'type': 'kaufland', 'code': 'QR-9'}, headers=headers
        ).get_json()['local_card']

        resp = client.delete(f"/user/cards/local/{created['public_id']}", headers=auth_headers(make_user()))
        assert resp.status_code == 403

    def test_card_types(self, client, db_session, headers):
        resp = client.get('/user/cards/local/types', headers=headers)
        types = {t['public_id']: t for t in resp.get_json()['types']}

        assert set(types) == {'biedronka', 'kaufland'}
        assert types['biedronka']['code'] == 'ean13'
        assert types['kaufland']['image_url'] == 'http://wallet.test/static/cards/kaufland.png'


class TestSearchRoute:
    def test_search(self, client, business, make_business, headers):
        make_business(name='Tea House', description='Loose leaf')

        resp = client.get('/user/search', query_string={'text': 'bean'}, headers=headers)
        assert [b['name'] for b in resp.get_json()['businesses']] == ['Green Bean']

        resp = client.get('/user/search', query_string={'text': 'LEAF'}, headers=headers)
        assert [b['name'] for b in resp.get_json()['businesses']] == ['Tea House']

    def test_paging(self, client, business, make_business, headers):
        make_business(name='Alpha')
        make_business(name='Zulu')

        resp = client.get('/user/search', query_string={'offset': 1, 'limit': 1}, headers=headers)
        assert [b['name'] for b in resp.get_json()['businesses']] == ['Green Bean']

    def test_short_dict_only(self, client, business, headers):
        found = client.get('/user/search', headers=headers).get_json()['businesses'][0]
        assert 'nip' not in found
        assert found['banner_image_id'] == business.banner_image_id

    @pytest.mark.parametrize("query", [{'limit': '-1'}, {'offset': 'x'}, {'limit': '2.5'}])
    def test_invalid_paging(self, client, db_session, headers, query):
        assert client.get('/user/search', query_string=query, headers=headers).status_code == 400
