"""Tests for authoritative rollups and the dirty-poll pass."""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncio
from decimal import Decimal

import h3
import pytest

from poll_geo_api.lib.aggregation import CellDelta, Counters, counters_from_answers
from poll_geo_api.lib.errors import InvalidArgumentError, RollupFailureError
from poll_geo_api.schemas.submission import SubmissionRequest
from poll_geo_api.services import rollup_service
from poll_geo_api.services.aggregate_store import apply_cell_delta, fetch_layer
from poll_geo_api.services.dirty_tracker import get_rollup_state, list_dirty_polls
from poll_geo_api.services.rollup_service import rollup_dirty_polls, rollup_poll
from poll_geo_api.services.submission_service import record_submission, withdraw_submission

POLL = "poll-rollup"
SITE_A = (39.93, -74.89)
SITE_B = (39.64, -74.80)
SITE_C = (39.25, -74.60)


async def _submit(session, settings, user_id, answers, site, *, poll_id=POLL, submitted=True) -> None:
    lat, lng = site
    request = SubmissionRequest(answers=answers, latitude=lat, longitude=lng, submitted=submitted)
    await record_submission(session, poll_id, user_id, request, settings)


def _shape(layer) -> list:
    return [(c.cell_id, c.total_respondents, c.stats) for c in layer]


async def _history(session, settings) -> None:
    """Submissions, edits, a move, a withdrawal, a draft and an unsubmit."""
    await _submit(session, settings, "u1", {"q1": 5, "q2": -3.3}, SITE_A)
    await _submit(session, settings, "u2", {"q1": 0.1}, SITE_A)
    await _submit(session, settings, "u3", {"q1": 0.2}, SITE_B)
    await _submit(session, settings, "u1", {"q1": -2, "q2": -3.3}, SITE_A)
    await _submit(session, settings, "u3", {"q1": 0.7, "q3": 1}, SITE_C)
    await withdraw_submission(session, POLL, "u2", settings)
    await _submit(session, settings, "u4", {"q1": 9}, SITE_B, submitted=False)
    await _submit(session, settings, "u5", {"q1": 1}, SITE_B)
    await _submit(session, settings, "u5", {"q1": 1}, SITE_B, submitted=False)
    await _submit(session, settings, "u6", {"q1": -4, "q2": 0}, SITE_C)


class TestRollupPoll:
    """Tests for rollup_poll."""

    @pytest.mark.asyncio
    async def test_rollup_matches_incremental_base_layer(self, async_session, settings) -> None:
        await _history(async_session, settings)
        incremental = _shape(await fetch_layer(async_session, POLL, settings.base_resolution))

        await rollup_poll(async_session, POLL, settings.aggregate_resolution_list)
        rebuilt = _shape(await fetch_layer(async_session, POLL, settings.base_resolution))

        assert incremental
        assert rebuilt == incremental

    @pytest.mark.asyncio
    async def test_rollup_is_idempotent(self, async_session, settings) -> None:
        await _history(async_session, settings)
        resolutions = settings.aggregate_resolution_list

        await rollup_poll(async_session, POLL, resolutions)
        first = {r: await fetch_layer(async_session, POLL, r) for r in resolutions}
        await rollup_poll(async_session, POLL, resolutions)
        second = {r: await fetch_layer(async_session, POLL, r) for r in resolutions}

        assert first == second

    @pytest.mark.asyncio
    async def test_populates_coarser_layers(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1, "q2": 2, "q3": 3}, SITE_A)
        await _submit(async_session, settings, "u2", {"q1": 1}, SITE_B)

        result = await rollup_poll(async_session, POLL, [8, 6, 4])

        assert result.responses_scanned == 4
        assert result.respondents == 2
        coarse = await fetch_layer(async_session, POLL, 4)
        expected = {h3.latlng_to_cell(*SITE_A, 4), h3.latlng_to_cell(*SITE_B, 4)}
        assert {c.cell_id for c in coarse} == expected
        assert sum(c.total_respondents for c in coarse) == 2
        assert sum(c.stats["q1"].sum for c in coarse) == 2

    @pytest.mark.asyncio
    async def test_clears_dirty_flag(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A)
        assert await list_dirty_polls(async_session) == [POLL]

        result = await rollup_poll(async_session, POLL, settings.aggregate_resolution_list)

        assert result.cleared_dirty is True
        state = await get_rollup_state(async_session, POLL)
        assert state.dirty is False
        assert state.last_rolled_at is not None

    @pytest.mark.asyncio
    async def test_rollup_removes_drifted_cells(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A)
        await _submit(async_session, settings, "u2", {"q1": 7}, SITE_B, poll_id="p2")
        stale = h3.latlng_to_cell(*SITE_C, 8)
        await apply_cell_delta(async_session, POLL, 8, CellDelta(stale, counters_from_answers({"q1": 3}), 1))
        await async_session.commit()

        await rollup_poll(async_session, POLL, [8])

        layer = await fetch_layer(async_session, POLL, 8)
        assert [c.cell_id for c in layer] == [h3.latlng_to_cell(*SITE_A, 8)]
        assert len(await fetch_layer(async_session, "p2", 8)) == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_poll_dirty(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A)
        before = _shape(await fetch_layer(async_session, POLL, 8))

        with (
            patch(
                "poll_geo_api.services.rollup_service.replace_layer",
                new_callable=AsyncMock,
                side_effect=RuntimeError("disk full"),
            ),
            pytest.raises(RollupFailureError, match="disk full"),
        ):
            await rollup_poll(async_session, POLL, [8])

        state = await get_rollup_state(async_session, POLL)
        assert state.dirty is True
        assert state.last_error == "disk full"
        assert _shape(await fetch_layer(async_session, POLL, 8)) == before

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, async_session) -> None:
        with pytest.raises(InvalidArgumentError):
            await rollup_poll(async_session, "", [8])
        with pytest.raises(InvalidArgumentError):
            await rollup_poll(async_session, POLL, [16])
        with pytest.raises(InvalidArgumentError):
            await rollup_poll(async_session, POLL, [])

    @pytest.mark.asyncio
    async def test_fractional_sums_reconcile_exactly(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 0.1}, SITE_A)
        await _submit(async_session, settings, "u2", {"q1": 0.2}, SITE_A)
        await _submit(async_session, settings, "u1", {"q1": 0.7}, SITE_A)
        await withdraw_submission(async_session, POLL, "u1", settings)

        incremental = await fetch_layer(async_session, POLL, settings.base_resolution)
        await rollup_poll(async_session, POLL, settings.aggregate_resolution_list)
        rebuilt = await fetch_layer(async_session, POLL, settings.base_resolution)

        expected = Counters(sum=Decimal("0.2"), pos_sum=Decimal("0.2"), pos_count=1)
        assert [c.stats["q1"] for c in incremental] == [expected]
        assert _shape(rebuilt) == _shape(incremental)

    @pytest.mark.asyncio
    async def test_bucket_sums_return_to_zero_with_their_counts(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 0.1}, SITE_A)
        await _submit(async_session, settings, "u2", {"q1": -0.3}, SITE_A)
        await _submit(async_session, settings, "u1", {"q1": 0.2}, SITE_A)
        await _submit(async_session, settings, "u1", {"q1": -0.1}, SITE_A)

        (cell,) = await fetch_layer(async_session, POLL, settings.base_resolution)
        counters = cell.stats["q1"]
        assert counters.pos_count == 0
        assert counters.pos_sum == 0
        assert counters.neg_sum == Decimal("-0.4")
        assert counters.sum == counters.pos_sum + counters.neg_sum

    @pytest.mark.asyncio
    async def test_locked_out_rollup_changes_nothing(self, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A)
        before = _shape(await fetch_layer(async_session, POLL, 8))

        with (
            patch.object(rollup_service, "_try_advisory_lock", new_callable=AsyncMock, return_value=False),
            patch.object(rollup_service, "replace_layer", new_callable=AsyncMock) as replace,
        ):
            result = await rollup_poll(async_session, POLL, [8])

        assert result.locked_out is True
        replace.assert_not_awaited()
        state = await get_rollup_state(async_session, POLL)
        assert state.dirty is True
        assert state.last_error is None
        assert _shape(await fetch_layer(async_session, POLL, 8)) == before

    @pytest.mark.asyncio
    async def test_poll_lock_is_evicted_when_released(self) -> None:
        async with rollup_service._poll_lock("a"):
            assert "a" in rollup_service._poll_locks
        assert "a" not in rollup_service._poll_locks

    @pytest.mark.asyncio
    async def test_poll_lock_serializes_holders(self) -> None:
        events = []

        async def hold(tag: str) -> None:
            async with rollup_service._poll_lock("a"):
                events.append(f"{tag}-in")
                await asyncio.sleep(0)
                events.append(f"{tag}-out")

        await asyncio.gather(hold("x"), hold("y"))

        assert events == ["x-in", "x-out", "y-in", "y-out"]
        assert "a" not in rollup_service._poll_locks


class TestAdvisoryLock:
    """Tests for the cross-process rollup lock."""

    def test_keys_are_stable_signed_int32(self) -> None:
        keys = rollup_service._advisory_keys("poll-1")
        assert keys == rollup_service._advisory_keys("poll-1")
        assert keys != rollup_service._advisory_keys("poll-2")
        assert all(-(2**31) <= k < 2**31 for k in keys)

    @pytest.mark.asyncio
    async def test_sqlite_needs_no_lock(self, async_session) -> None:
        assert await rollup_service._try_advisory_lock(async_session, POLL) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("held", [True, False])
    async def test_postgres_tries_transaction_lock(self, held) -> None:
        session = AsyncMock()
        session.execute.return_value = MagicMock(scalar_one=MagicMock(return_value=held))

        with patch.object(rollup_service, "dialect_name", return_value="postgresql"):
            acquired = await rollup_service._try_advisory_lock(session, POLL)

        assert acquired is held
        statement = session.execute.await_args.args[0]
        assert "pg_try_advisory_xact_lock" in str(statement)


class TestRollupDirtyPolls:
    """Tests for rollup_dirty_polls."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated_per_poll(self, session_factory, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A, poll_id="good")
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A, poll_id="bad")
        real_rollup = rollup_service.rollup_poll

        async def selective_rollup(session, poll_id, resolutions, **kwargs):
            if poll_id == "bad":
                raise RollupFailureError(poll_id, "corrupt row")
            return await real_rollup(session, poll_id, resolutions, **kwargs)

        with patch("poll_geo_api.services.rollup_service.rollup_poll", side_effect=selective_rollup):
            summary = await rollup_dirty_polls(session_factory, [8, 6])

        assert summary.succeeded == ["good"]
        assert summary.failed == ["bad"]
        async with session_factory() as session:
            assert await list_dirty_polls(session) == ["bad"]

    @pytest.mark.asyncio
    async def test_nothing_dirty(self, session_factory) -> None:
        summary = await rollup_dirty_polls(session_factory, [8])
        assert summary.succeeded == []
        assert summary.failed == []

    @pytest.mark.asyncio
    async def test_locked_out_poll_stays_dirty(self, session_factory, async_session, settings) -> None:
        await _submit(async_session, settings, "u1", {"q1": 1}, SITE_A, poll_id="busy")

        with patch.object(rollup_service, "_try_advisory_lock", new_callable=AsyncMock, return_value=False):
            summary = await rollup_dirty_polls(session_factory, [8])

        assert summary.locked_out == ["busy"]
        assert summary.succeeded == []
        assert summary.failed == []
        async with session_factory() as session:
            assert await list_dirty_polls(session) == ["busy"]
