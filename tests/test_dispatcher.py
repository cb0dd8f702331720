from combate.models.board import Team
from combate.services.game_session import SessionPhase
from support import FakeConnection, frame, layout_wire


def _piece_at(payload, row, col):
    return next(p for p in payload["pieces"] if p["position"] == {"row": row, "col": col})


def _start_match(server, session, a, b):
    (pid_a, conn_a), (pid_b, conn_b) = a, b
    server.on_message(pid_a, conn_a, frame("PLACEMENT_READY", {"allPieces": layout_wire(Team.A)}))
    server.on_message(pid_b, conn_b, frame("PLACEMENT_READY", {"allPieces": layout_wire(Team.B)}))
    assert session.phase is SessionPhase.ACTIVE


def test_ping_pong(server):
    conn = FakeConnection()
    pid = server.on_connect(conn)
    server.on_message(pid, conn, frame("PING"))
    assert conn.sent[-1] == {"type": "PONG", "payload": {}}


def test_unknown_type_is_rejected_explicitly(server):
    conn = FakeConnection()
    pid = server.on_connect(conn)
    server.on_message(pid, conn, frame("TELEPORT", {"x": 1}))
    assert conn.texts()[-1] == "Unknown message type: TELEPORT"


def test_malformed_frames_are_dropped(paired):
    server, session, (pid_a, conn_a), _ = paired
    conn_a.clear()
    server.on_message(pid_a, conn_a, "{not json")
    server.on_message(pid_a, conn_a, '["MOVE_PIECE"]')
    server.on_message(pid_a, conn_a, frame("MOVE_PIECE", {"pieceId": "x"}))
    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"rank": "spy", "position": {"row": "six"}}))
    assert conn_a.sent == []
    assert session.placement_states[pid_a].staged_pieces == ()


def test_move_outside_a_match(server):
    conn = FakeConnection()
    pid = server.on_connect(conn)
    server.on_message(pid, conn, frame("MOVE_PIECE", {"pieceId": "x", "target": {"row": 5, "col": 0}}))
    assert conn.last("MOVE_ERROR")["payload"]["message"] == "You are not in a match."


def test_move_during_placement(paired):
    server, session, (pid_a, conn_a), _ = paired
    server.on_message(pid_a, conn_a, frame("MOVE_PIECE", {"pieceId": "x", "target": {"row": 5, "col": 0}}))
    assert conn_a.last("MOVE_ERROR")["payload"]["message"] == "The game has not started yet."


def test_placement_update_place_and_move(paired):
    server, session, (pid_a, conn_a), (pid_b, conn_b) = paired
    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"rank": "spy", "position": {"row": 7, "col": 3}}))
    status = conn_a.last("PLACEMENT_STATUS")["payload"]
    assert len(status["stagedPieces"]) == 1
    assert status["remainingInventory"]["spy"] == 0
    # the opponent only learns the status, never the layout
    assert conn_b.last("PLACEMENT_STATUS")["payload"] == {"status": "PLACING", "opponent": True}

    piece_id = status["stagedPieces"][0]["id"]
    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"pieceId": piece_id, "position": {"row": 9, "col": 0}}))
    moved = conn_a.last("PLACEMENT_STATUS")["payload"]["stagedPieces"][0]
    assert moved["position"] == {"row": 9, "col": 0}

    server.on_message(pid_a, conn_a, frame("PLACEMENT_REMOVE", {"pieceId": piece_id}))
    assert conn_a.last("PLACEMENT_STATUS")["payload"]["stagedPieces"] == []


def test_placement_errors_are_reported(paired):
    server, session, (pid_a, conn_a), _ = paired
    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"rank": "spy", "position": {"row": 2, "col": 3}}))
    error = conn_a.last("PLACEMENT_ERROR")["payload"]
    assert error["code"] == "P4001"
    assert error["type"] == "INVALID_POSITION"

    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"position": {"row": 7, "col": 3}}))
    assert conn_a.last("PLACEMENT_ERROR")["payload"]["code"] == "P4002"

    server.on_message(
        pid_a, conn_a, frame("PLACEMENT_UPDATE", {"rank": "spy", "position": {"row": 7, "col": 3}}, match_id="other")
    )
    rejected = conn_a.last("PLACEMENT_ERROR")
    assert rejected["payload"]["code"] == "P4201"
    # the envelope names the match the player is really in, not the one they claimed
    assert rejected["matchId"] == session.id

    server.on_message(pid_a, conn_a, frame("PLACEMENT_READY"))
    assert conn_a.last("PLACEMENT_ERROR")["payload"]["code"] == "P4003"
    assert session.placement_states[pid_a].staged_pieces == ()


def test_placement_outside_a_match(server):
    conn = FakeConnection()
    pid = server.on_connect(conn)
    server.on_message(pid, conn, frame("PLACEMENT_AUTO", match_id="someone-elses"))
    error = conn.last("PLACEMENT_ERROR")
    assert error["payload"]["code"] == "P4103"
    assert "matchId" not in error


def test_auto_and_ready_start_the_game(paired):
    server, session, (pid_a, conn_a), (pid_b, conn_b) = paired
    server.on_message(pid_a, conn_a, frame("PLACEMENT_AUTO", {"seed": 1}))
    server.on_message(pid_a, conn_a, frame("PLACEMENT_READY"))
    assert conn_a.last("PLACEMENT_STATUS")["payload"]["status"] == "READY"
    assert conn_b.last("PLACEMENT_STATUS")["payload"] == {"status": "READY", "opponent": True}
    assert session.placement_states[pid_b].opponent_status.value == "READY"

    # a confirmed army is locked
    server.on_message(pid_a, conn_a, frame("PLACEMENT_AUTO"))
    assert conn_a.last("PLACEMENT_ERROR")["payload"]["code"] == "P4104"

    server.on_message(pid_b, conn_b, frame("PLACEMENT_AUTO"))
    server.on_message(pid_b, conn_b, frame("PLACEMENT_READY"))
    assert session.phase is SessionPhase.ACTIVE
    for conn in (conn_a, conn_b):
        start = conn.last("GAME_START")
        assert start["matchId"] == session.id
        assert start["payload"]["turnPlayerId"] == pid_a
        assert len(start["payload"]["pieces"]) == 80

    server.on_message(pid_a, conn_a, frame("PLACEMENT_AUTO"))
    assert conn_a.last("PLACEMENT_ERROR")["payload"]["code"] == "P4104"


def test_move_flow_after_start(paired):
    server, session, a, b = paired
    (pid_a, conn_a), (pid_b, conn_b) = a, b
    _start_match(server, session, a, b)

    start_b = conn_b.last("GAME_START")["payload"]
    b_scout = _piece_at(start_b, 3, 0)
    server.on_message(pid_b, conn_b, frame("MOVE_PIECE", {"pieceId": b_scout["id"], "target": {"row": 4, "col": 0}}))
    assert conn_b.last("MOVE_ERROR")["payload"]["message"] == "It is not your turn."

    start_a = conn_a.last("GAME_START")["payload"]
    a_scout = _piece_at(start_a, 6, 0)
    assert a_scout["rank"] == "scout"
    server.on_message(pid_a, conn_a, frame("MOVE_PIECE", {"pieceId": a_scout["id"], "target": {"row": 4, "col": 0}}))

    update_a = conn_a.last("STATE_UPDATE")["payload"]
    update_b = conn_b.last("STATE_UPDATE")["payload"]
    assert update_a["turnPlayerId"] == pid_b
    assert _piece_at(update_a, 4, 0)["rank"] == "scout"
    assert _piece_at(update_b, 4, 0)["rank"] is None

    # scout attacks scout: both removed
    server.on_message(pid_b, conn_b, frame("MOVE_PIECE", {"pieceId": b_scout["id"], "target": {"row": 4, "col": 0}}))
    after = conn_a.last("STATE_UPDATE")["payload"]
    assert all(p["position"] != {"row": 4, "col": 0} for p in after["pieces"])
    assert len(after["pieces"]) == 78
    assert after["turnPlayerId"] == pid_a


def test_set_name_in_active_game_is_broadcast(paired):
    server, session, a, b = paired
    (pid_a, conn_a), (pid_b, conn_b) = a, b
    _start_match(server, session, a, b)
    server.on_message(pid_a, conn_a, frame("SET_NAME", {"name": "  Alice "}))
    players = conn_b.last("STATE_UPDATE")["payload"]["players"]
    assert {"id": pid_a, "displayName": "Alice", "team": "A"} in players


def test_internal_error_is_contained(paired, monkeypatch):
    server, session, (pid_a, conn_a), _ = paired

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(server.placement, "place", boom)
    server.on_message(pid_a, conn_a, frame("PLACEMENT_UPDATE", {"rank": "spy", "position": {"row": 7, "col": 3}}))
    assert conn_a.texts()[-1] == "Internal server error."
    assert session.placement_states[pid_a].staged_pieces == ()
