"""Tests for URL propagation to reference holders."""

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from avatar_sync.models.enums import HolderKind
from avatar_sync.resolution.reconciliation import Reconciler, any_succeeded
from avatar_sync.resolution.records import ProfilesHolder, RecordStore, UsersHolder
from avatar_sync.resolution.types import HolderLocation

from .conftest import AddPerson, image_urls

URL = "https://storage.test/p.png"


class ReadOnlyProfilesHolder(ProfilesHolder):
    async def write(self, session, row_id, url):
        raise OperationalError("UPDATE profiles", {}, Exception("attempt to write a readonly database"))


LOCATIONS = [HolderLocation(HolderKind.USERS, "rec-1"), HolderLocation(HolderKind.PROFILES, "rec-1")]


class TestReconciler:
    async def test_writes_every_holder(self, session_factory: async_sessionmaker[AsyncSession], add_person: AddPerson):
        await add_person(record_id="rec-1")

        results = await Reconciler(RecordStore(session_factory)).propagate(URL, LOCATIONS)

        assert [(r.success, r.changed) for r in results] == [(True, True), (True, True)]
        assert await image_urls(session_factory, "rec-1") == (URL, URL)

    async def test_rewrite_is_unchanged_success(
        self, session_factory: async_sessionmaker[AsyncSession], add_person: AddPerson
    ):
        await add_person(record_id="rec-1", user_image_url=URL, profile_image_url=URL)

        results = await Reconciler(RecordStore(session_factory)).propagate(URL, LOCATIONS)

        assert all(r.success and not r.changed for r in results)

    async def test_one_failure_does_not_block_others(
        self, session_factory: async_sessionmaker[AsyncSession], add_person: AddPerson
    ):
        await add_person(record_id="rec-1")
        store = RecordStore(session_factory, (UsersHolder(), ReadOnlyProfilesHolder()))

        results = await Reconciler(store).propagate(URL, LOCATIONS)

        users, profiles = results
        assert users.success and users.changed
        assert not profiles.success
        assert profiles.error is not None
        assert "readonly" in profiles.error
        assert any_succeeded(results)
        assert await image_urls(session_factory, "rec-1") == (URL, None)

    async def test_no_locations(self, session_factory: async_sessionmaker[AsyncSession]):
        assert await Reconciler(RecordStore(session_factory)).propagate(URL, []) == []

    def test_any_succeeded_empty(self):
        assert not any_succeeded([])
