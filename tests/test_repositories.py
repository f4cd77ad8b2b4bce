"""Tests for the identity, job control and analytics repositories."""

import pytest

from shared.models.analytics import Interaction, StreamInfo
from shared.models.identity import JobStatus
from shared.repositories import (
    AnalyticsRepository,
    IdentityRepository,
    JobControlRepository,
    normalize_username,
)
from shared.schema import TABLES
from tests.fakes import EPOCH


@pytest.fixture
def identities(gateway):
    return IdentityRepository(gateway)


@pytest.fixture
def analytics(gateway):
    return AnalyticsRepository(gateway)


class TestIdentityRepository:
    def test_normalize_username(self):
        assert normalize_username("  @Alice_Live ") == "alice_live"

    @pytest.mark.asyncio
    async def test_list_active_oldest_first(self, identities, store):
        store.seed_identity("bob", offset=10)
        store.seed_identity("alice", offset=0)
        store.seed_identity("carol", offset=5, is_active=False)

        assert await identities.list_active() == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_add_then_readd_reactivates(self, identities, store):
        added = await identities.add("@Alice", display_name="Alice")
        assert added.username == "alice"
        assert added.is_active is True

        assert await identities.deactivate("alice") is True
        assert await identities.list_active() == []

        again = await identities.add("alice")
        assert again.is_active is True
        assert len(store.rows("tracked_usernames")) == 1

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, identities):
        assert await identities.deactivate("nobody") is False

    @pytest.mark.asyncio
    async def test_stream_totals_for_unknown_identity_skipped(self, identities, store):
        await identities.add_stream_totals("ghost", 60)

        assert store.rows("tracked_usernames") == []


class TestJobControlRepository:
    @pytest.mark.asyncio
    async def test_set_creates_then_updates_row(self, gateway, store):
        job_control = JobControlRepository(gateway)

        await job_control.set_status(JobStatus.STARTED)
        await job_control.set_status(JobStatus.STOPPED)

        assert store.rows("job_control") == [{"id": 1, "status": "stopped"}]
        assert await job_control.get_status() is JobStatus.STOPPED


class TestAnalyticsRepository:
    @pytest.mark.asyncio
    async def test_stream_info_upserted_per_streamer(self, analytics, store):
        await analytics.upsert_stream_info(StreamInfo("alice", "room-1", EPOCH))
        await analytics.upsert_stream_info(
            StreamInfo("alice", "room-2", EPOCH, hls_url="https://pull.example/b.m3u8")
        )

        rows = store.rows("tiktok_stream_info")
        assert len(rows) == 1
        assert rows[0]["room_id"] == "room-2"
        assert rows[0]["hls_url"] == "https://pull.example/b.m3u8"

        await analytics.mark_offline("alice", EPOCH)
        assert rows[0]["is_live"] is False

    @pytest.mark.asyncio
    async def test_record_event_targets_type_table(self, analytics, store):
        await analytics.record_event("alice", Interaction.SHARE, "bob", {}, EPOCH)

        rows = store.rows("tiktok_share_events")
        assert len(rows) == 1
        assert rows[0]["user_nickname"] == "bob"
        assert rows[0]["timestamp"] == EPOCH

    @pytest.mark.asyncio
    async def test_user_stat_keyed_by_streamer_and_actor(self, analytics, store):
        await analytics.bump_user_stat("alice", "bob", Interaction.MEMBER, EPOCH)
        await analytics.bump_user_stat("carol", "bob", Interaction.MEMBER, EPOCH)
        stat = await analytics.bump_user_stat("alice", "bob", Interaction.MEMBER, EPOCH)

        assert stat.total_memberships == 2
        assert len(store.rows("user_stats")) == 2


class TestSchema:
    @pytest.mark.parametrize(
        "table",
        [
            "job_control",
            "tracked_usernames",
            "stream_sessions",
            "user_stats",
            "tiktok_stream_info",
            *(interaction.event_table for interaction in Interaction),
        ],
    )
    def test_every_table_has_ddl(self, table):
        assert any(f"CREATE TABLE IF NOT EXISTS {table}(" in ddl for ddl in TABLES)
