import pytest

from combate.models.board import ARMY_SIZE, REQUIRED_COMPOSITION, Player, Position, Team
from combate.models.messages import StagedPieceIn
from combate.models.placement import PlacementStatus
from combate.services.placement_engine import PlacementEngine
from combate.services.placement_errors import PlacementError, PlacementErrorType
from combate.services.rate_limiter import (
    PIECE_MOVEMENT,
    PIECE_PLACEMENT,
    PLACEMENT_CONFIRMATION,
    RateLimitConfig,
    RateLimiter,
)
from support import layout_for


@pytest.fixture
def engine() -> PlacementEngine:
    return PlacementEngine(rate_limiter=RateLimiter())


@pytest.fixture
def state(engine):
    return engine.create_initial("m1", "pa", Team.A)


def _pos(row: int, col: int) -> Position:
    return Position(row=row, col=col)


def _conserved(state) -> bool:
    return state.remaining_total() + len(state.staged_pieces) == ARMY_SIZE


def _full(engine, state):
    pieces = [StagedPieceIn(rank=rank, position=pos) for rank, pos in layout_for(state.team)]
    return engine.load_layout(state, pieces)


def test_initial_state(state):
    assert state.home_rows == (6, 7, 8, 9)
    assert state.remaining_inventory == REQUIRED_COMPOSITION
    assert state.staged_pieces == ()
    assert state.local_status is PlacementStatus.PLACING
    assert _conserved(state)


def test_place_consumes_inventory(engine, state):
    after = engine.place(state, "marshal", _pos(6, 0))
    assert after.remaining_inventory["marshal"] == 0
    assert len(after.staged_pieces) == 1
    assert after.staged_pieces[0].team == Team.A
    assert _conserved(after)
    # input snapshot unchanged
    assert state.remaining_inventory["marshal"] == 1


@pytest.mark.parametrize(
    "rank, position, error_type, code",
    [
        ("marshal", _pos(3, 0), PlacementErrorType.INVALID_POSITION, "P4001"),
        ("marshal", _pos(10, 0), PlacementErrorType.POSITION_OUT_OF_BOUNDS, "P4005"),
        ("dragon", _pos(6, 0), PlacementErrorType.INVALID_PIECE_TYPE, "P4007"),
    ],
)
def test_place_rejections(engine, state, rank, position, error_type, code):
    with pytest.raises(PlacementError) as info:
        engine.place(state, rank, position)
    assert info.value.type is error_type
    assert info.value.code == code


def test_place_on_occupied_cell(engine, state):
    state = engine.place(state, "marshal", _pos(6, 0))
    with pytest.raises(PlacementError) as info:
        engine.place(state, "general", _pos(6, 0))
    assert info.value.code == "P4006"
    assert info.value.context["existingPiece"]["rank"] == "marshal"


def test_place_exhausted_rank(engine, state):
    state = engine.place(state, "flag", _pos(9, 0))
    with pytest.raises(PlacementError) as info:
        engine.place(state, "flag", _pos(9, 1))
    assert info.value.type is PlacementErrorType.PIECE_NOT_AVAILABLE


def test_move_to_free_cell_and_swap(engine, state):
    state = engine.place(state, "marshal", _pos(6, 0))
    state = engine.place(state, "bomb", _pos(6, 1))
    marshal = state.staged_at(_pos(6, 0))

    moved = engine.move(state, marshal.id, _pos(7, 5))
    assert moved.staged_by_id(marshal.id).position == _pos(7, 5)

    bomb = moved.staged_at(_pos(6, 1))
    swapped = engine.move(moved, marshal.id, _pos(6, 1))
    assert swapped.staged_by_id(marshal.id).position == _pos(6, 1)
    assert swapped.staged_by_id(bomb.id).position == _pos(7, 5)
    assert swapped.remaining_inventory == moved.remaining_inventory
    assert _conserved(swapped)


def test_move_unknown_piece(engine, state):
    with pytest.raises(PlacementError) as info:
        engine.move(state, "nope", _pos(6, 0))
    assert info.value.type is PlacementErrorType.PIECE_NOT_AVAILABLE


def test_remove_restores_inventory(engine, state):
    placed = engine.place(state, "spy", _pos(8, 3))
    removed = engine.remove(placed, placed.staged_pieces[0].id)
    assert removed.staged_pieces == ()
    assert removed.remaining_inventory == state.remaining_inventory


def test_confirm_incomplete(engine, state):
    state = engine.place(state, "spy", _pos(8, 3))
    with pytest.raises(PlacementError) as info:
        engine.confirm(state)
    assert info.value.type is PlacementErrorType.INCOMPLETE_PLACEMENT
    assert info.value.code == "P4003"
    assert info.value.context["remainingPieces"] == ARMY_SIZE - 1


def _with_staged(state, pieces):
    return state.model_copy(update={"staged_pieces": tuple(pieces)})


def test_completion_rejects_wrong_piece_count(engine, state):
    full = _full(engine, state)
    short = _with_staged(full, full.staged_pieces[1:])
    assert short.remaining_total() == 0
    with pytest.raises(PlacementError) as info:
        engine.validate_completion(short)
    assert info.value.type is PlacementErrorType.INVALID_PIECE_COMPOSITION
    assert info.value.code == "P4004"
    assert info.value.context["actualCount"] == ARMY_SIZE - 1
    assert info.value.context["expectedCount"] == ARMY_SIZE


def test_completion_rejects_wrong_composition(engine, state):
    full = _full(engine, state)
    scout = next(p for p in full.staged_pieces if p.rank == "scout")
    swapped = [p.model_copy(update={"rank": "marshal"}) if p.id == scout.id else p for p in full.staged_pieces]
    with pytest.raises(PlacementError) as info:
        engine.confirm(_with_staged(full, swapped))
    assert info.value.code == "P4004"
    errors = info.value.context["compositionErrors"]
    assert "Scout: expected 8, got 7" in errors
    assert "Marshal: expected 1, got 2" in errors
    assert info.value.context["actualComposition"]["marshal"] == 2


def test_completion_rejects_pieces_outside_home_rows(engine, state):
    full = _full(engine, state)
    stray = full.staged_pieces[0]
    moved = [p.model_copy(update={"position": _pos(5, 0)}) if p.id == stray.id else p for p in full.staged_pieces]
    with pytest.raises(PlacementError) as info:
        engine.validate_completion(_with_staged(full, moved))
    assert info.value.type is PlacementErrorType.INVALID_POSITION
    assert info.value.code == "P4001"
    assert info.value.context["invalidPieces"] == [{"id": stray.id, "position": {"row": 5, "col": 0}}]
    assert info.value.context["homeRows"] == [6, 7, 8, 9]


def test_full_layout_confirms_and_locks(engine, state):
    full = _full(engine, state)
    assert full.remaining_total() == 0
    assert len(full.staged_pieces) == ARMY_SIZE

    ready = engine.confirm(full)
    assert ready.local_status is PlacementStatus.READY
    assert engine.confirm(ready) is ready

    piece = ready.staged_pieces[0]
    with pytest.raises(PlacementError) as info:
        engine.remove(ready, piece.id)
    assert info.value.type is PlacementErrorType.WRONG_GAME_PHASE


def test_load_layout_rejects_extra_rank(engine, state):
    pieces = [StagedPieceIn(rank="marshal", position=_pos(6, 0)), StagedPieceIn(rank="marshal", position=_pos(6, 1))]
    with pytest.raises(PlacementError) as info:
        engine.load_layout(state, pieces)
    assert info.value.type is PlacementErrorType.PIECE_NOT_AVAILABLE


def test_auto_arrange_fills_home_rows(engine, state):
    state = engine.place(state, "flag", _pos(9, 0))
    arranged = engine.auto_arrange(state, seed=7)
    assert arranged.remaining_total() == 0
    assert len(arranged.staged_pieces) == ARMY_SIZE
    assert arranged.staged_at(_pos(9, 0)).rank == "flag"
    assert all(p.position.row in arranged.home_rows for p in arranged.staged_pieces)
    assert len({p.position.key for p in arranged.staged_pieces}) == ARMY_SIZE
    assert engine.confirm(arranged).local_status is PlacementStatus.READY


def test_auto_arrange_same_seed_same_layout(engine, state):
    first = engine.auto_arrange(state, seed=42)
    second = engine.auto_arrange(state, seed=42)
    assert [(p.rank, p.position.key) for p in first.staged_pieces] == [
        (p.rank, p.position.key) for p in second.staged_pieces
    ]


def test_rate_limit_exceeded():
    limiter = RateLimiter(
        limits={
            PIECE_PLACEMENT: RateLimitConfig(2, 60_000),
            PIECE_MOVEMENT: RateLimitConfig(2, 60_000),
            PLACEMENT_CONFIRMATION: RateLimitConfig(1, 60_000),
        }
    )
    engine = PlacementEngine(rate_limiter=limiter)
    state = engine.create_initial("m1", "pa", Team.A)
    state = engine.place(state, "spy", _pos(6, 0))
    state = engine.place(state, "flag", _pos(9, 0))
    with pytest.raises(PlacementError) as info:
        engine.place(state, "marshal", _pos(6, 1))
    assert info.value.code == "P4301"
    assert info.value.context["retryAfterMs"] > 0
    assert state.remaining_inventory["marshal"] == 1

    # other classes keep their own window
    assert engine.move(state, state.staged_pieces[0].id, _pos(6, 5)).staged_at(_pos(6, 5)) is not None


def test_errors_are_audited(engine, state):
    engine.place(state, "spy", _pos(6, 0))
    with pytest.raises(PlacementError):
        engine.place(state, "spy", _pos(0, 0))
    entries = engine.audit.recent()
    assert entries[-2]["level"] == "INFO"
    assert entries[-1]["level"] == "WARNING"
    assert entries[-1]["error"]["code"] == "P4001"
    assert entries[-1]["context"]["operation"] == "place"


def test_error_payload_shape(engine, state):
    with pytest.raises(PlacementError) as info:
        engine.place(state, "spy", _pos(0, 0))
    payload = info.value.to_payload()
    assert payload["type"] == "INVALID_POSITION"
    assert payload["code"] == "P4001"
    assert payload["userMessage"]
    assert payload["context"]["requestId"].startswith("req_")
    assert "timestamp" in payload["context"]


def test_promote_merges_both_armies(engine):
    players = (
        Player(id="pa", display_name="Alice", team=Team.A),
        Player(id="pb", display_name="Bob", team=Team.B),
    )
    first = engine.confirm(_full(engine, engine.create_initial("m1", "pa", Team.A)))
    second = engine.confirm(_full(engine, engine.create_initial("m1", "pb", Team.B)))
    assert PlacementEngine.both_ready(first, second)

    game = PlacementEngine.promote(second, first, players)
    assert game.turn_player_id == "pa"
    assert len(game.pieces) == 2 * ARMY_SIZE
    assert len({p.position.key for p in game.pieces}) == 2 * ARMY_SIZE
    assert not any(p.revealed for p in game.pieces)
    assert game.finished is False
