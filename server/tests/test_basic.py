"""
Simple basic tests for the API and helpers
"""
import re
from datetime import date, datetime

import pytest

from helpers.CredentialStrategy import CredentialStrategy
from helpers.DateTimeSerializer import DateTimeSerializerVisitor
from helpers.UserCodeGenerator import UserCodeGenerator
from models.models import PaymentStatus


def test_health_check(client):
    """Test the health check endpoint"""
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"


def test_protected_endpoint_requires_auth(client):
    """Test that protected endpoints require authentication"""
    response = client.get("/api/user/profile")
    assert response.status_code == 401


def test_register_requires_auth(client):
    response = client.post("/api/registrations", json={"eventId": "anything"})
    assert response.status_code == 401


def test_invalid_endpoint_returns_404(client):
    """Test that invalid endpoints return 404"""
    response = client.get("/api/nonexistent")
    assert response.status_code == 404


def test_datetime_serialization():
    """Test that datetime objects are properly serialized"""
    visitor = DateTimeSerializerVisitor()

    dt = datetime(2024, 1, 1, 12, 30, 45)
    result = visitor.visit(dt)
    assert isinstance(result, str)
    assert "2024" in result

    data = {"name": "test", "created_at": dt, "on": date(2025, 3, 10)}
    result = visitor.visit(data)
    assert isinstance(result["created_at"], str)
    assert result["on"] == "2025-03-10"

    data_list = [dt, "string", 123]
    result = visitor.visit(data_list)
    assert isinstance(result[0], str)
    assert result[1] == "string"
    assert result[2] == 123


def test_nested_serialization_handles_enums():
    visitor = DateTimeSerializerVisitor()

    data = {
        "payment_status": PaymentStatus.VERIFICATION_PENDING,
        "team_members": [{"joined": datetime(2024, 6, 15)}],
    }

    result = visitor.visit(data)
    assert result["payment_status"] == "verification_pending"
    assert isinstance(result["team_members"][0]["joined"], str)


def test_password_hash_and_verify():
    strategy = CredentialStrategy(n=2 ** 10)

    hashed = strategy.hash("correct horse")
    assert hashed.startswith("scrypt$")
    assert "correct horse" not in hashed
    assert strategy.verify("correct horse", hashed)
    assert not strategy.verify("wrong horse", hashed)
    assert not strategy.verify("correct horse", None)


def test_password_hash_is_salted():
    strategy = CredentialStrategy(n=2 ** 10)

    first = strategy.hash("same")
    second = strategy.hash("same")
    assert first != second
    assert strategy.verify("same", first) and strategy.verify("same", second)


def test_empty_password_rejected():
    with pytest.raises(ValueError):
        CredentialStrategy().hash("")


def test_temporary_password_character_classes():
    strategy = CredentialStrategy()
    for _ in range(50):
        password = strategy.temporary_password()
        assert re.search(r"[A-Z]", password)
        assert re.search(r"[a-z]", password)
        assert re.search(r"[0-9]", password)
        assert re.search(r"[@#$%&*!]", password)
    assert strategy.temporary_password() != strategy.temporary_password()


async def test_user_codes_are_unique_over_many_generations():
    issued = set()

    async def exists(code):
        return code in issued

    generator = UserCodeGenerator(exists, prefix="FEST25")
    for _ in range(10000):
        code = await generator.generate()
        assert code not in issued
        issued.add(code)

    assert len(issued) == 10000
    assert all(re.fullmatch(r"FEST25[0-9A-F]{6}", code) for code in issued)


async def test_user_code_retries_after_collision(caplog):
    calls = []

    async def exists(code):
        calls.append(code)
        return len(calls) == 1

    generator = UserCodeGenerator(exists, prefix="FEST25")
    code = await generator.generate()

    assert code == calls[-1]
    assert generator.last_attempts == 2
    assert not generator.last_used_fallback
    assert "collision" in caplog.text


async def test_user_code_falls_back_after_bounded_attempts(caplog):
    checked = []

    async def always_taken(code):
        checked.append(code)
        return True

    generator = UserCodeGenerator(always_taken, prefix="FEST25", max_attempts=5, clock=lambda: 1700000000.123)
    code = await generator.generate()

    assert len(checked) == 5
    assert generator.last_used_fallback
    assert code.startswith("FEST25")
    assert len(code) == len("FEST25") + 6
    assert code == generator.fallback()
    assert "fallback" in caplog.text
