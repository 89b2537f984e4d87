"""
Bearer token and CLI tests.

Verifies:
- Tokens are stored hashed and stop working when revoked, expired or the
  user is deactivated
- CLI commands create users, print tokens and report shop credit
"""

from datetime import timedelta

import pytest

from wholesale.extensions import db
from wholesale.models import SessionToken, User
from wholesale.services import session_service
from wholesale.services.errors import NotFoundError, ValidationError


# =============================================================================
# SESSIONS
# =============================================================================


def test_token_stored_hashed(rep):
    session, token = session_service.issue_token(rep.id)

    assert session.token_hash == session_service.hash_token(token)
    assert db.session.query(SessionToken).filter_by(token_hash=token).first() is None
    assert session_service.validate_token(token).id == rep.id


def test_revoked_token(rep):
    _, token = session_service.issue_token(rep.id)

    assert session_service.revoke_token(token) is True
    assert session_service.validate_token(token) is None
    assert session_service.revoke_token(token) is False


def test_expired_token(rep):
    _, token = session_service.issue_token(rep.id, lifetime=timedelta(seconds=-1))
    assert session_service.validate_token(token) is None


def test_deactivated_user(rep):
    _, token = session_service.issue_token(rep.id)
    rep.is_active = False
    db.session.commit()

    assert session_service.validate_token(token) is None
    with pytest.raises(ValidationError):
        session_service.issue_token(rep.id)


def test_unknown_user(db_session):
    with pytest.raises(NotFoundError):
        session_service.issue_token(999_999)
    assert session_service.validate_token("not-a-token") is None


# =============================================================================
# CLI
# =============================================================================


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_cli_create_user_and_issue_token(runner, db_session):
    result = runner.invoke(args=[
        "users", "create",
        "--email", " Nimal@Example.com ",
        "--role", "sales_rep",
        "--first-name", "Nimal",
        "--phone", "0771234567",
    ])
    assert "PASS Created sales_rep nimal@example.com" in result.output

    user = db.session.query(User).filter_by(email="nimal@example.com").one()
    assert user.role == "sales_rep"

    result = runner.invoke(args=["users", "create", "--email", "nimal@example.com", "--role", "admin"])
    assert "already exists" in result.output

    result = runner.invoke(args=["users", "issue-token", "nimal@example.com", "--hours", "1"])
    token = result.output.strip()
    assert session_service.validate_token(token).id == user.id

    result = runner.invoke(args=["users", "issue-token", "ghost@example.com"])
    assert "FAIL User ghost@example.com not found" in result.output


def test_cli_seed_demo_once(runner, db_session):
    result = runner.invoke(args=["system", "seed-demo"])
    assert "PASS Demo data created" in result.output
    assert db.session.query(User).count() == 2

    result = runner.invoke(args=["system", "seed-demo"])
    assert "SKIP" in result.output


def test_cli_shop_credit(runner, shop, approved_order):
    approved_order(quantity=10)

    result = runner.invoke(args=["shops", "credit", str(shop.id)])
    lines = dict(line.split(None, 1) for line in result.output.strip().splitlines())
    assert lines["outstanding_cents"] == "1000"
    assert lines["active_bill_count"] == "1"

    result = runner.invoke(args=["shops", "credit", "999999"])
    assert result.output.startswith("FAIL")
