"""Tests for the submission service."""

from unittest.mock import patch

import h3
import pytest

from poll_geo_api.lib.aggregation import CellLocation, TransitionKind
from poll_geo_api.lib.errors import InvalidArgumentError
from poll_geo_api.schemas.submission import SubmissionRequest
from poll_geo_api.services.aggregate_store import fetch_layer
from poll_geo_api.services.dirty_tracker import get_rollup_state
from poll_geo_api.services.submission_service import load_snapshot, record_submission, withdraw_submission

POLL = "poll-submit"
SITE = (39.93, -74.89)


def _request(answers, *, submitted=True, **location) -> SubmissionRequest:
    if not location:
        location = {"latitude": SITE[0], "longitude": SITE[1]}
    return SubmissionRequest(answers=answers, submitted=submitted, **location)


class TestRecordSubmission:
    """Tests for record_submission."""

    @pytest.mark.asyncio
    async def test_first_submission_is_stored_and_aggregated(self, async_session, settings) -> None:
        result = await record_submission(async_session, POLL, "u1", _request({"q1": 3, "q2": -1}), settings)

        assert result.transition == TransitionKind.NEWLY_COUNTED
        assert result.aggregated is True
        snapshot = await load_snapshot(async_session, POLL, "u1")
        assert snapshot.answers == {"q1": 3.0, "q2": -1.0}
        assert snapshot.submitted is True

        layer = await fetch_layer(async_session, POLL, 8)
        assert len(layer) == 1
        assert layer[0].total_respondents == 1
        assert layer[0].stats["q1"].sum == 3

    @pytest.mark.asyncio
    async def test_coordinates_are_stamped_at_base_resolution(self, async_session, settings) -> None:
        await record_submission(async_session, POLL, "u1", _request({"q1": 1}), settings)

        snapshot = await load_snapshot(async_session, POLL, "u1")
        assert snapshot.location == CellLocation(h3.latlng_to_cell(*SITE, 8), 8)
        assert (snapshot.latitude, snapshot.longitude) == SITE

    @pytest.mark.asyncio
    async def test_explicit_cell_is_kept(self, async_session, settings) -> None:
        cell = h3.latlng_to_cell(*SITE, 9)
        await record_submission(async_session, POLL, "u1", _request({"q1": 1}, cell_id=cell, resolution=9), settings)

        snapshot = await load_snapshot(async_session, POLL, "u1")
        assert snapshot.location == CellLocation(cell, 9)
        layer = await fetch_layer(async_session, POLL, 8)
        assert [c.cell_id for c in layer] == [h3.cell_to_parent(cell, 8)]

    @pytest.mark.asyncio
    async def test_omitted_questions_are_removed(self, async_session, settings) -> None:
        await record_submission(async_session, POLL, "u1", _request({"q1": 3, "q2": 4}), settings)
        result = await record_submission(async_session, POLL, "u1", _request({"q1": 5}), settings)

        assert result.transition == TransitionKind.EDITED
        snapshot = await load_snapshot(async_session, POLL, "u1")
        assert snapshot.answers == {"q1": 5.0}
        layer = await fetch_layer(async_session, POLL, 8)
        assert set(layer[0].stats) == {"q1"}
        assert layer[0].stats["q1"].sum == 5

    @pytest.mark.asyncio
    async def test_draft_then_submit(self, async_session, settings) -> None:
        draft = await record_submission(async_session, POLL, "u1", _request({"q1": 2}, submitted=False), settings)
        assert draft.aggregated is False
        assert await fetch_layer(async_session, POLL, 8) == []

        submitted = await record_submission(async_session, POLL, "u1", _request({"q1": 2}), settings)
        assert submitted.transition == TransitionKind.NEWLY_COUNTED
        assert len(await fetch_layer(async_session, POLL, 8)) == 1

    @pytest.mark.asyncio
    async def test_no_location_is_stored_but_not_aggregated(self, async_session, settings) -> None:
        request = SubmissionRequest(answers={"q1": 1})
        result = await record_submission(async_session, POLL, "u1", request, settings)

        assert result.aggregated is False
        assert await load_snapshot(async_session, POLL, "u1") is not None
        assert await fetch_layer(async_session, POLL, 8) == []

    @pytest.mark.asyncio
    async def test_aggregation_failure_keeps_the_write(self, async_session, settings) -> None:
        with patch(
            "poll_geo_api.services.submission_service.on_response_written",
            side_effect=RuntimeError("boom"),
        ):
            result = await record_submission(async_session, POLL, "u1", _request({"q1": 1}), settings)

        assert result.aggregated is False
        assert result.transition == TransitionKind.NOOP
        assert await load_snapshot(async_session, POLL, "u1") is not None
        state = await get_rollup_state(async_session, POLL)
        assert state is not None
        assert state.dirty is True

    @pytest.mark.asyncio
    async def test_blank_ids_rejected(self, async_session, settings) -> None:
        with pytest.raises(InvalidArgumentError):
            await record_submission(async_session, POLL, "", _request({"q1": 1}), settings)


class TestWithdrawSubmission:
    """Tests for withdraw_submission."""

    @pytest.mark.asyncio
    async def test_nothing_stored(self, async_session, settings) -> None:
        assert await withdraw_submission(async_session, POLL, "ghost", settings) is None

    @pytest.mark.asyncio
    async def test_withdraw_removes_contribution(self, async_session, settings) -> None:
        await record_submission(async_session, POLL, "u1", _request({"q1": 3}), settings)
        await record_submission(async_session, POLL, "u2", _request({"q1": 4}), settings)

        result = await withdraw_submission(async_session, POLL, "u1", settings)

        assert result.transition == TransitionKind.NEWLY_UNCOUNTED
        assert await load_snapshot(async_session, POLL, "u1") is None
        layer = await fetch_layer(async_session, POLL, 8)
        assert layer[0].total_respondents == 1
        assert layer[0].stats["q1"].sum == 4
