from datetime import datetime, timezone
import pytest
from sqlalchemy.exc import OperationalError

from errors import DuplicateToken, StoreUnavailable
from models import AccessToken, Form
from token_store import TokenStore
from tokens import generate_token

@pytest.fixture
def form(db):
    f = Form(title="Store Test", description="d", type="private")
    db.add(f)
    db.commit()
    return f

def _row(form, token=None, email="a@x.com"):
    return AccessToken(form_id=form.id, email=email, token=token or generate_token(), used=False)

def test_insert_and_find(db, form):
    store = TokenStore(db)
    row = store.insert(_row(form, "FindMe000001"))
    assert row.id is not None
    assert store.find_one(form_id=form.id, token="FindMe000001").email == "a@x.com"
    assert store.token_exists("FindMe000001")
    assert store.find_one(token="Missing00000") is None

def test_duplicate_token_rejected(db, form):
    store = TokenStore(db)
    store.insert(_row(form, "DupDupDup001"))
    with pytest.raises(DuplicateToken):
        store.insert(_row(form, "DupDupDup001", email="b@x.com"))
    # session still usable after the rollback
    assert store.token_exists("DupDupDup001")

def test_update_if_matches_once(db, TestingSessionLocal, form):
    store = TokenStore(db)
    store.insert(_row(form, "OnceOnly0001"))
    criteria = {"form_id": form.id, "token": "OnceOnly0001", "used": False}
    now = datetime.now(timezone.utc)

    # a second, independent session racing on the same row
    other = TestingSessionLocal()
    try:
        assert store.update_if(criteria, {"used": True, "used_at": now}) is True
        assert TokenStore(other).update_if(criteria, {"used": True, "used_at": now}) is False
    finally:
        other.close()

    db.expire_all()
    row = store.find_one(token="OnceOnly0001")
    assert row.used is True and row.used_at is not None

def test_list_for_form(db, form):
    store = TokenStore(db)
    store.insert(_row(form, email="one@x.com"))
    store.insert(_row(form, email="two@x.com"))
    emails = [t.email for t in store.list_for_form(form.id)]
    assert emails[-2:] == ["one@x.com", "two@x.com"]

class _BrokenSession:
    def execute(self, *a, **kw):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))
    def rollback(self):
        pass

def test_unreachable_store_raises_store_unavailable():
    store = TokenStore(_BrokenSession())
    with pytest.raises(StoreUnavailable):
        store.find_one(token="X")
    with pytest.raises(StoreUnavailable):
        store.update_if({"token": "X"}, {"used": True})
