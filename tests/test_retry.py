import pytest
from sqlalchemy.exc import OperationalError

from vaultdrop.core.errors import BlobStoreUnavailable, InvalidInput, TransientStoreError
from vaultdrop.core.retry import is_transient, transient_retry

class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    async def rollback(self):
        self.rollbacks += 1

def _connection_lost() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))

def test_is_transient():
    assert is_transient(_connection_lost())
    assert is_transient(BlobStoreUnavailable("b2 down"))
    assert not is_transient(InvalidInput("bad"))
    assert not is_transient(ValueError("bad"))

@pytest.mark.asyncio
async def test_retries_then_succeeds():
    calls = []

    @transient_retry
    async def flaky(db, value):
        calls.append(value)
        if len(calls) < 3:
            raise _connection_lost()
        return value * 2

    db = FakeSession()
    assert await flaky(db, 21) == 42
    assert len(calls) == 3
    assert db.rollbacks == 2

@pytest.mark.asyncio
async def test_exhaustion_raises_transient_store_error():
    @transient_retry
    async def always_down(db):
        raise BlobStoreUnavailable("unreachable")

    db = FakeSession()
    with pytest.raises(TransientStoreError) as exc:
        await always_down(db)
    assert exc.value.status_class == "retry"
    assert isinstance(exc.value.__cause__, BlobStoreUnavailable)
    assert db.rollbacks == 3

@pytest.mark.asyncio
async def test_domain_errors_are_not_retried():
    calls = []

    @transient_retry
    async def rejects(db):
        calls.append(1)
        raise InvalidInput("nope")

    db = FakeSession()
    with pytest.raises(InvalidInput):
        await rejects(db)
    assert calls == [1]
    assert db.rollbacks == 0
