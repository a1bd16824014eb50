"""
Tests for the listing store.
"""

from datetime import timedelta

from api.database import Listing, RUN_RUNNING, RUN_SUCCESS, utc_now


class TestListings:

    def test_create_and_find_by_url(self, store, sample_search, make_listing):
        row = store.create_listing(make_listing(), sample_search.id)

        assert row.id is not None
        assert row.property_type == "House"
        assert store.find_listing_by_url("https://x/1").id == row.id
        assert store.find_listing_by_url("https://x/unknown") is None

    def test_duplicate_url_returns_none(self, db_session, store, sample_search, make_listing):
        store.create_listing(make_listing(), sample_search.id)

        assert store.create_listing(make_listing(price=1.0), sample_search.id) is None
        assert db_session.query(Listing).count() == 1
        # Session is usable after the rollback
        assert store.find_search_by_id(sample_search.id) is not None

    def test_mark_notification(self, store, sample_search, make_listing):
        row = store.create_listing(make_listing(), sample_search.id)
        store.mark_listing_notification(row, "sent", True)
        assert store.find_listing_by_url(row.url).notification_status == "sent"


class TestRuns:

    def test_find_active_run_respects_cutoff(self, store, sample_search):
        old = store.create_search_run(
            sample_search.id, "multiple", status=RUN_RUNNING, start_time=utc_now() - timedelta(hours=1),
        )
        cutoff = utc_now() - timedelta(minutes=30)
        assert store.find_active_run(sample_search.id, cutoff) is None

        fresh = store.create_search_run(sample_search.id, "multiple", status=RUN_RUNNING)
        assert store.find_active_run(sample_search.id, cutoff).id == fresh.id

        store.update_search_run(fresh, status=RUN_SUCCESS)
        assert store.find_active_run(sample_search.id, cutoff) is None
        assert old.id is not None

    def test_recent_runs_newest_first(self, store, sample_search):
        first = store.create_search_run(sample_search.id, "multiple", start_time=utc_now() - timedelta(minutes=5))
        second = store.create_search_run(sample_search.id, "multiple")

        assert [r.id for r in store.recent_runs(sample_search.id)] == [second.id, first.id]
        assert len(store.recent_runs(sample_search.id, limit=1)) == 1

    def test_last_checked(self, store, sample_search):
        store.update_search_last_checked(sample_search)
        assert sample_search.last_checked_at is not None


class TestUsers:

    def test_create_and_find(self, store):
        user = store.create_user("ext-1", "user-1@example.com")
        assert store.find_user_by_external_id("ext-1").id == user.id
        assert store.find_user_by_id(user.id).email == "user-1@example.com"
