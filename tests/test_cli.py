# Overview: Pytest coverage for the flask CLI groups and the /health endpoint.

"""
CLI and Health Tests

Commands run through app.test_cli_runner() inside the test app context,
so they share the in-memory database with the fixtures.
"""

from datetime import timedelta

import pytest

from stampwallet.models import Token, User
from stampwallet.models.auth import TOKEN_PURPOSE_SESSION
from stampwallet.routes import system
from stampwallet.services import session_service
from stampwallet.time_utils import utcnow
from tests.conftest import TEST_PASSWORD


@pytest.fixture
def runner(app, db_session):
    return app.test_cli_runner()


class TestSystemCommands:
    def test_init_db(self, runner):
        result = runner.invoke(args=['system', 'init-db'])
        assert result.exit_code == 0
        assert 'Database schema ready' in result.output

    def test_reset_db(self, runner, db_session, user):
        result = runner.invoke(args=['system', 'reset-db', '--yes'])

        assert result.exit_code == 0
        assert 'Database reset complete' in result.output
        db_session.expunge_all()
        assert db_session.query(User).count() == 0

    def test_reset_db_aborts_without_confirmation(self, runner, db_session, user):
        result = runner.invoke(args=['system', 'reset-db'], input='n\n')
        assert result.exit_code == 1
        assert db_session.query(User).count() == 1


class TestUserCommands:
    def test_create_user(self, runner, db_session):
        result = runner.invoke(args=[
            'users', 'create', '--email', 'Admin@Example.com', '--password', TEST_PASSWORD, '--verified',
        ])

        assert result.exit_code == 0, result.output
        assert 'Created user admin@example.com' in result.output
        created = db_session.query(User).filter_by(email='admin@example.com').one()
        assert created.email_verified is True

    def test_create_user_prompts(self, runner, db_session):
        result = runner.invoke(
            args=['users', 'create'],
            input=f'prompted@example.com\n{TEST_PASSWORD}\n{TEST_PASSWORD}\n',
        )
        assert result.exit_code == 0, result.output
        created = db_session.query(User).filter_by(email='prompted@example.com').one()
        assert created.email_verified is False

    def test_duplicate_user(self, runner, user):
        result = runner.invoke(args=['users', 'create', '--email', user.email, '--password', TEST_PASSWORD])
        assert result.exit_code == 1
        assert 'already exists' in result.output

    @pytest.mark.parametrize("email, password, message", [
        ('not-an-email', TEST_PASSWORD, 'email is invalid'),
        ('short@example.com', 'abc', 'password must be at least 8 characters long'),
    ])
    def test_invalid_input(self, runner, db_session, email, password, message):
        result = runner.invoke(args=['users', 'create', '--email', email, '--password', password])
        assert result.exit_code == 1
        assert message in result.output

    def test_list_empty(self, runner, db_session):
        result = runner.invoke(args=['users', 'list'])
        assert 'No users found.' in result.output

    def test_list_users(self, runner, user, business):
        result = runner.invoke(args=['users', 'list'])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert any('holder@example.com' in line and line.rstrip().endswith('-') for line in lines)
        assert any('owner@example.com' in line and 'Green Bean' in line for line in lines)


class TestMaintenanceCommands:
    def test_expire_transactions(self, runner, wallet, clock, user, business, make_card):
        wallet.transactions.start(make_card(user, business), [])
        clock.advance(seconds=wallet.services.transaction_ttl.total_seconds() + 1)

        result = runner.invoke(args=['maintenance', 'expire-transactions', '--batch-size', '10'])

        assert result.exit_code == 0
        assert 'Expired 1 transactions.' in result.output

    def test_sweep_runs_until_interrupted(self, runner, monkeypatch):
        calls = {}

        def fake_run_sweeper(manager, **kwargs):
            calls.update(kwargs)
            raise KeyboardInterrupt

        monkeypatch.setattr('stampwallet.cli.maintenance_service.run_sweeper', fake_run_sweeper)
        result = runner.invoke(args=['maintenance', 'sweep', '--interval', '5', '--batch-size', '20'])

        assert result.exit_code == 0
        assert 'Sweeper stopped.' in result.output
        assert calls['interval'] == 5.0
        assert calls['batch_size'] == 20
        assert calls['ctx'].cancelled

    def test_cleanup_tokens(self, runner, db_session, user):
        stale_time = utcnow() - timedelta(days=40)
        session_service.create_token(user.id, TOKEN_PURPOSE_SESSION, timedelta(days=1), now=stale_time)
        session_service.create_token(user.id, TOKEN_PURPOSE_SESSION, timedelta(days=1))
        db_session.commit()

        result = runner.invoke(args=['maintenance', 'cleanup-tokens'])

        assert 'Deleted 1 tokens.' in result.output
        assert db_session.query(Token).count() == 1


class TestHealth:
    def test_healthy(self, client, user, business):
        resp = client.get('/health')

        assert resp.status_code == 200
        data = resp.get_json()
        assert data['status'] == 'healthy'
        assert data['timestamp'].endswith('Z')
        assert data['checks']['database']['details'] == {
            'users': 2,
            'businesses': 1,
            'active_transactions': 0,
        }
        assert data['checks']['tokens']['status'] == 'healthy'

    def test_unhealthy_check(self, client, db_session, monkeypatch):
        monkeypatch.setattr(system, 'check_database_health', lambda: {'status': 'unhealthy'})
        resp = client.get('/health')
        assert resp.status_code == 503
        assert resp.get_json()['status'] == 'unhealthy'
