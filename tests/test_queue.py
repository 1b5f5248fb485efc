"""Tests for the FIFO analysis queue."""

from __future__ import annotations

import asyncio

import pytest

from game_review.analysis_queue import AnalysisQueue, AnalysisStatus
from game_review.engine import EngineState
from game_review.events import CompleteEvent, ErrorEvent, ProgressEvent
from game_review.models import AnalysisRequest, PlayedMove, Side
from game_review.pgn import read_game_moves


def _request(game_id: str, pgn: str = "1. e4 e5 *") -> AnalysisRequest:
    starting_fen, moves = read_game_moves(pgn)
    return AnalysisRequest(game_id=game_id, moves=tuple(moves), starting_fen=starting_fen)


@pytest.fixture()
def clients(scripted_client):
    """Factory plus the list of clients it has built."""
    built = []

    def factory():
        client, _ = scripted_client()
        built.append(client)
        return client

    return factory, built


def _drain(queue: AnalysisQueue) -> None:
    async def scenario():
        queue.start()
        await queue.join()
        await queue.close()

    asyncio.run(scenario())


class TestEnqueue:

    def test_positions(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        assert queue.enqueue(_request("g1")) == 1
        assert queue.enqueue(_request("g2")) == 2
        assert queue.pending_ids == ["g1", "g2"]
        assert queue.status("g1") is AnalysisStatus.PENDING
        assert queue.active_id is None

    def test_duplicate_rejected(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))
        with pytest.raises(ValueError, match="already queued"):
            queue.enqueue(_request("g1"))

    def test_unknown_game(self, fast_settings):
        queue = AnalysisQueue(settings=fast_settings)
        assert queue.status("missing") is None
        assert queue.result("missing") is None
        assert queue.error("missing") is None


class TestProcessing:

    def test_runs_in_arrival_order(self, clients, fast_settings):
        factory, built = clients
        seen = []

        async def observe(game_id, event):
            seen.append((game_id, type(event)))

        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings, on_event=observe)
        for game_id in ("g1", "g2", "g3"):
            queue.enqueue(_request(game_id))
        _drain(queue)

        completed = [game_id for game_id, kind in seen if kind is CompleteEvent]
        assert completed == ["g1", "g2", "g3"]
        assert all(queue.status(g) is AnalysisStatus.COMPLETE for g in completed)
        assert len(built) == 3
        assert all(client.state is EngineState.TERMINATED for client in built)

    def test_one_run_at_a_time(self, clients, fast_settings):
        factory, _ = clients
        seen = []

        async def observe(game_id, event):
            seen.append(game_id)

        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings, on_event=observe)
        queue.enqueue(_request("g1", "1. e4 e5 2. Nf3 *"))
        queue.enqueue(_request("g2", "1. d4 *"))
        _drain(queue)

        # Every g1 event precedes every g2 event
        assert seen == ["g1"] * 4 + ["g2"] * 2

    def test_results_recorded(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1", "1. e4 e5 2. Nf3 *"))
        _drain(queue)

        result = queue.result("g1")
        assert result is not None
        assert len(result.moves) == 3
        assert queue.pending_ids == []
        assert queue.active_id is None

    def test_failure_does_not_block_queue(self, clients, fast_settings):
        factory, _ = clients
        seen = []

        async def observe(game_id, event):
            seen.append((game_id, type(event)))

        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings, on_event=observe)
        queue.enqueue(AnalysisRequest(
            game_id="bad",
            moves=(PlayedMove("e2", "e5", Side.WHITE, "e5"),),
        ))
        queue.enqueue(_request("good"))
        _drain(queue)

        assert queue.status("bad") is AnalysisStatus.FAILED
        assert queue.error("bad")
        assert queue.status("good") is AnalysisStatus.COMPLETE
        assert ("bad", ErrorEvent) in seen
        assert ("good", ProgressEvent) in seen

    def test_failed_game_can_be_requeued(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(AnalysisRequest(
            game_id="g1",
            moves=(PlayedMove("e2", "e5", Side.WHITE, "e5"),),
        ))

        async def scenario():
            queue.start()
            await queue.join()
            assert queue.status("g1") is AnalysisStatus.FAILED

            queue.enqueue(_request("g1"))
            assert queue.error("g1") is None
            await queue.join()
            await queue.close()

        asyncio.run(scenario())
        assert queue.status("g1") is AnalysisStatus.COMPLETE

    def test_requeued_complete_game_drops_old_result(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))

        async def scenario():
            queue.start()
            await queue.join()
            assert queue.result("g1") is not None

            queue.enqueue(_request("g1", "1. d4 d5 2. c4 *"))
            requeued = (queue.status("g1"), queue.result("g1"))
            await queue.join()
            await queue.close()
            return requeued

        status, result = asyncio.run(scenario())
        assert status is AnalysisStatus.PENDING
        assert result is None
        assert len(queue.result("g1").moves) == 3

    def test_depth_applies_to_every_game(self, scripted_client, fast_settings):
        transports = []

        def factory():
            client, transport = scripted_client()
            transports.append(transport)
            return client

        queue = AnalysisQueue(depth=5, engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))
        queue.enqueue(_request("g2"))
        _drain(queue)

        assert all("go depth 5" in t.sent for t in transports)


class TestSelection:

    def test_first_started_game_selected(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))
        queue.enqueue(_request("g2"))
        assert queue.selected_id is None
        _drain(queue)
        assert queue.selected_id == "g1"

    def test_existing_selection_kept(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.select("earlier")
        queue.enqueue(_request("g1"))
        _drain(queue)
        assert queue.selected_id == "earlier"

    def test_cleared_selection_taken_by_next_game(self, clients, fast_settings):
        factory, _ = clients
        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))

        async def scenario():
            queue.start()
            await queue.join()
            queue.select(None)
            queue.enqueue(_request("g2"))
            await queue.join()
            await queue.close()

        asyncio.run(scenario())
        assert queue.selected_id == "g2"


class TestClose:

    def test_close_cancels_active_run(self, scripted_client, scripted_engine, fast_settings):
        built = []

        def factory():
            client, _ = scripted_client(scripted_engine(hold_after=1))
            built.append(client)
            return client

        queue = AnalysisQueue(engine_factory=factory, settings=fast_settings)
        queue.enqueue(_request("g1"))

        async def scenario():
            queue.start()
            await asyncio.sleep(0.05)
            assert queue.active_id == "g1"
            await queue.close()

        asyncio.run(scenario())
        assert built[0].state is EngineState.TERMINATED
        assert queue.status("g1") is AnalysisStatus.FAILED
        assert queue.active_id is None

    def test_close_idle_queue(self, fast_settings):
        queue = AnalysisQueue(settings=fast_settings)
        asyncio.run(queue.close())
