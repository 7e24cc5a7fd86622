import asyncio

import httpx
import pytest
import pytest_asyncio

from api_bridge import FlaskBridge
from conftest import doc
from quiz_admin.editor.api import PackageApi
from quiz_admin.editor.drag import DragController, DropOutcome
from quiz_admin.editor.errors import AuthorizationError, NotFound, ValidationError
from quiz_admin.editor.identifiers import Kind
from quiz_admin.editor.notifications import Level
from quiz_admin.editor.sync_client import ORDER_CHANNEL, PackageSyncClient
from quiz_admin.services import ai_service

DELAY = 0.05
SAVE_ORDER = ("POST", "/api/round-questions/save-order")


def _titles(package):
    return [[question.title for question in round_.questions] for round_ in package.rounds]


async def _settle(sync):
    """Let every quiet period elapse and every write (and its re-fetch) finish."""
    await asyncio.sleep(DELAY * 3)
    await sync.scheduler.drain()


@pytest.fixture
def bridge(admin_client):
    return FlaskBridge(admin_client)


@pytest_asyncio.fixture
async def api(bridge):
    api = PackageApi("http://quiz.test", transport=httpx.MockTransport(bridge))
    yield api
    await api.aclose()


@pytest_asyncio.fixture
async def sync(api, package_tree):
    """Sync client loaded with Round A [Q1, Q2] and Round B [Q3]."""
    client = PackageSyncClient(api, package_tree["id"], delay=DELAY)
    await client.load()
    return client


def _link(package, title):
    for round_ in package.rounds:
        for link in round_.round_questions:
            if link.question.title == title:
                return link
    raise LookupError(title)


@pytest.mark.asyncio
async def test_load_tags_ids(sync, package_tree):
    package = sync.snapshot
    assert package.title == "Friday quiz"
    assert _titles(package) == [["Q1", "Q2"], ["Q3"]]
    assert all(round_.id.kind is Kind.ROUND for round_ in package.rounds)
    assert package.rounds[0].id.raw_id == package_tree["rounds"][0]["id"]
    assert _link(package, "Q1").id.kind is Kind.QUESTION
    assert _link(package, "Q1").question.preview == "Q1 text"


@pytest.mark.asyncio
async def test_load_of_missing_package(api, admin_client):
    client = PackageSyncClient(api, 999, delay=DELAY)
    with pytest.raises(NotFound):
        await client.load()
    assert await client.refresh() is None
    assert client.not_found is True
    assert client.notifier.history == []


@pytest.mark.asyncio
async def test_load_without_session_is_unauthorized(app, package_tree):
    bridge = FlaskBridge(app.test_client())
    async with PackageApi("http://quiz.test", transport=httpx.MockTransport(bridge)) as api:
        client = PackageSyncClient(api, package_tree["id"])
        with pytest.raises(AuthorizationError) as excinfo:
            await client.load()
    assert excinfo.value.status == 401
    assert excinfo.value.message == "Not authenticated."


@pytest.mark.asyncio
async def test_reorder_within_round_saves_once(sync, bridge):
    created = await sync.create_question(
        title="Q4", content=doc("Q4 text"), answer="four", round_id=sync.snapshot.rounds[0].id
    )
    assert created is not None
    assert _titles(sync.snapshot)[0] == ["Q1", "Q2", "Q4"]

    drag = DragController(sync)
    drag.pick_up(_link(sync.snapshot, "Q4").id)
    drag.move_over(_link(sync.snapshot, "Q1").id)
    assert _titles(sync.view)[0] == ["Q4", "Q1", "Q2"]
    assert drag.drop(_link(sync.snapshot, "Q1").id) is DropOutcome.DROPPED

    # Optimistic: shown before anything is written.
    assert _titles(sync.snapshot)[0] == ["Q4", "Q1", "Q2"]
    assert bridge.calls(*SAVE_ORDER) == []

    await _settle(sync)
    (payload,) = bridge.calls(*SAVE_ORDER)
    first_round = payload["rounds"][0]
    expected_ids = [_link(sync.snapshot, title).id.raw_id for title in ("Q4", "Q1", "Q2")]
    assert [link["id"] for link in first_round["roundQuestions"]] == expected_ids
    assert [link["orderIndex"] for link in first_round["roundQuestions"]] == [0, 1, 2]
    assert len(payload["rounds"]) == 2

    # Re-fetched from the server after the write.
    assert _titles(sync.snapshot) == [["Q4", "Q1", "Q2"], ["Q3"]]
    assert sync.saving is False


@pytest.mark.asyncio
async def test_move_across_rounds_persists(sync, bridge, admin_client, package_tree):
    drag = DragController(sync)
    drag.pick_up(_link(sync.snapshot, "Q2").id)
    drag.drop(sync.snapshot.rounds[1].id)
    assert _titles(sync.snapshot) == [["Q1"], ["Q3", "Q2"]]

    await _settle(sync)
    tree = admin_client.get(f"/api/packages/{package_tree['id']}").get_json()
    round_a, round_b = tree["rounds"]
    assert [link["question"]["title"] for link in round_b["roundQuestions"]] == ["Q3", "Q2"]
    assert [link["orderIndex"] for link in round_b["roundQuestions"]] == [0, 1]
    assert [link["orderIndex"] for link in round_a["roundQuestions"]] == [0]


@pytest.mark.asyncio
async def test_edit_then_reorder_sends_both_writes(sync, bridge):
    q1 = _link(sync.snapshot, "Q1").question
    sync.edit_question(q1.id, answer="Updated answer")
    assert _link(sync.snapshot, "Q1").question.answer == "Updated answer"

    await asyncio.sleep(DELAY / 4)
    drag = DragController(sync)
    drag.pick_up(sync.snapshot.rounds[1].id)
    drag.drop(sync.snapshot.rounds[0].id)

    await _settle(sync)
    writes = [
        (method, path)
        for method, path, _ in bridge.requests
        if method != "GET"
    ]
    assert writes == [("PUT", f"/api/questions/{q1.id}"), SAVE_ORDER]
    assert bridge.calls("PUT", f"/api/questions/{q1.id}") == [{"answer": "Updated answer"}]
    assert [round_.name for round_ in sync.snapshot.rounds] == ["Round B", "Round A"]
    assert _link(sync.snapshot, "Q1").question.answer == "Updated answer"


@pytest.mark.asyncio
async def test_typing_coalesces_into_one_update(sync, bridge):
    question_id = _link(sync.snapshot, "Q3").question.id
    for text in ("P", "Pa", "Par", "Paris"):
        sync.edit_question(question_id, answer=text)
        await asyncio.sleep(DELAY / 5)

    await _settle(sync)
    assert bridge.calls("PUT", f"/api/questions/{question_id}") == [{"answer": "Paris"}]


@pytest.mark.asyncio
async def test_refresh_keeps_unsaved_edits(sync):
    question_id = _link(sync.snapshot, "Q2").question.id
    sync.edit_question(question_id, content=doc("Still typing"))
    await sync.refresh()
    assert _link(sync.snapshot, "Q2").question.content == doc("Still typing")
    await sync.close()
    assert _link(sync.snapshot, "Q2").question.content == doc("Still typing")


@pytest.mark.asyncio
async def test_failed_save_is_reported_and_reconciled(sync, bridge):
    bridge.fail_next(
        *SAVE_ORDER, httpx.Response(500, json={"error": "Database is locked."})
    )
    drag = DragController(sync)
    drag.pick_up(_link(sync.snapshot, "Q1").id)
    drag.drop(sync.snapshot.rounds[1].id)
    assert _titles(sync.snapshot) == [["Q2"], ["Q3", "Q1"]]

    await _settle(sync)
    (error,) = sync.notifier.errors
    assert error.title == "Server error"
    assert error.message == "Database is locked."
    assert error.level is Level.ERROR
    # Server truth replaces the optimistic arrangement.
    assert _titles(sync.snapshot) == [["Q1", "Q2"], ["Q3"]]
    assert sync.saving is False


@pytest.mark.asyncio
async def test_network_failure_is_reported(sync, bridge):
    question_id = _link(sync.snapshot, "Q1").question.id
    bridge.fail_next(
        "PUT",
        f"/api/questions/{question_id}",
        httpx.ConnectError("connection refused"),
    )
    sync.edit_question(question_id, answer="Lost")
    await _settle(sync)

    (error,) = sync.notifier.errors
    assert error.title == "Network error"
    assert _link(sync.snapshot, "Q1").question.answer == "Q1 answer"


@pytest.mark.asyncio
async def test_deleted_package_switches_to_not_found(sync, admin_client, package_tree):
    admin_client.delete(f"/api/packages/{package_tree['id']}")
    sync.edit_question(_link(sync.snapshot, "Q1").question.id, answer="Orphan")
    await _settle(sync)
    assert sync.not_found is True


@pytest.mark.asyncio
async def test_edit_rejects_unknown_fields(sync):
    with pytest.raises(ValidationError):
        sync.edit_question(1, colour="red")
    assert sync.scheduler.pending_payloads() == {}


@pytest.mark.asyncio
async def test_add_round_appends(sync, bridge):
    await sync.add_round()
    (body,) = bridge.calls("POST", "/api/rounds")
    assert body["orderIndex"] == 2
    assert body["questionCount"] == 5
    assert [round_.name for round_ in sync.snapshot.rounds] == ["Round A", "Round B", "New round"]
    assert sync.notifier.history[-1].message == "Round added"


@pytest.mark.asyncio
async def test_add_round_requires_name(sync, bridge):
    with pytest.raises(ValidationError) as excinfo:
        await sync.add_round(name="  ")
    assert excinfo.value.field == "name"
    assert bridge.calls("POST", "/api/rounds") == []


@pytest.mark.asyncio
async def test_update_and_delete_round(sync):
    round_b = sync.snapshot.rounds[1]
    await sync.update_round(round_b.id, name="Music", description="Name that tune")
    assert sync.snapshot.rounds[1].name == "Music"
    assert sync.snapshot.rounds[1].description == "Name that tune"

    sync.select_round(round_b.id)
    await sync.delete_round(round_b.id)
    assert [round_.name for round_ in sync.snapshot.rounds] == ["Round A"]
    assert sync.context.current_round_id is None


@pytest.mark.asyncio
async def test_remove_question_from_round(sync):
    round_a = sync.snapshot.rounds[0]
    await sync.remove_question_from_round(round_a.id, round_a.questions[0].id)
    assert _titles(sync.snapshot)[0] == ["Q2"]
    assert sync.snapshot.rounds[0].round_questions[0].order_index == 0


@pytest.mark.asyncio
async def test_remove_missing_question_notifies_not_found(sync):
    round_b = sync.snapshot.rounds[1]
    q1 = _link(sync.snapshot, "Q1").question.id
    await sync.remove_question_from_round(round_b.id, q1)
    (error,) = sync.notifier.errors
    assert error.title == "Not found"
    assert error.message == "Question is not in this round."
    assert sync.not_found is False
    assert _titles(sync.snapshot) == [["Q1", "Q2"], ["Q3"]]


@pytest.mark.asyncio
async def test_add_question_needs_selected_round(sync):
    with pytest.raises(ValidationError):
        await sync.add_question_to_round(1)


@pytest.mark.asyncio
async def test_search_then_add_to_selected_round(sync):
    sync.select_round(sync.snapshot.rounds[1].id)
    found = await sync.search_questions("Q1")
    assert [question.title for question in found] == ["Q1"]
    assert sync.available_total == 1

    await sync.add_question_to_round(found[0].id)
    assert _titles(sync.snapshot)[1] == ["Q3", "Q1"]


@pytest.mark.asyncio
async def test_create_question_validates_content(sync, bridge):
    with pytest.raises(ValidationError) as excinfo:
        await sync.create_question(content={"type": "doc", "content": []})
    assert excinfo.value.field == "content"
    assert bridge.calls("POST", "/api/questions") == []


@pytest.mark.asyncio
async def test_create_question_without_selection_stays_unplaced(sync, bridge):
    created = await sync.create_question(content=doc("Loose question"), answer="yes")
    assert created.title == "Question"
    assert bridge.calls("POST", f"/api/rounds/{sync.snapshot.rounds[0].id.raw_id}/questions") == []
    assert _titles(sync.snapshot) == [["Q1", "Q2"], ["Q3"]]


@pytest.mark.asyncio
async def test_generate_questions_fill_current_round(sync, monkeypatch):
    monkeypatch.setattr(
        ai_service,
        "generate_questions",
        lambda **kwargs: [
            {"title": f"Generated {index}", "question": f"Prompt {index}?", "answer": str(index)}
            for index in range(kwargs["count"])
        ],
    )
    sync.select_round(sync.snapshot.rounds[1].id)
    generated = await sync.generate_questions("space facts", count=2)
    assert [question.title for question in generated] == ["Generated 0", "Generated 1"]
    assert _titles(sync.snapshot)[1] == ["Q3", "Generated 0", "Generated 1"]
    assert sync.notifier.history[-1].message == "Generated 2 new questions"


@pytest.mark.asyncio
async def test_generate_questions_requires_round(sync):
    with pytest.raises(ValidationError):
        await sync.generate_questions("space facts", count=2)


@pytest.mark.asyncio
async def test_update_package_title(sync):
    with pytest.raises(ValidationError):
        await sync.update_package(title="")
    await sync.update_package(title="Saturday quiz", playDate="2026-11-21")
    assert sync.snapshot.title == "Saturday quiz"
    assert sync.snapshot.play_date == "2026-11-21"


@pytest.mark.asyncio
async def test_pending_order_write_is_on_order_channel(sync):
    drag = DragController(sync)
    drag.pick_up(sync.snapshot.rounds[1].id)
    drag.drop(sync.snapshot.rounds[0].id)
    assert sync.scheduler.is_pending(ORDER_CHANNEL)
    await sync.close()
    assert not sync.scheduler.is_pending(ORDER_CHANNEL)


@pytest.mark.asyncio
async def test_round_order_survives_added_round(sync, bridge):
    drag = DragController(sync)
    drag.pick_up(sync.snapshot.rounds[1].id)
    assert drag.drop(sync.snapshot.rounds[0].id) is DropOutcome.DROPPED

    await sync.add_round(name="Round C")
    assert [round_.name for round_ in sync.snapshot.rounds] == ["Round B", "Round A", "Round C"]

    await _settle(sync)
    assert sync.notifier.errors == []
    (payload,) = bridge.calls(*SAVE_ORDER)
    assert len(payload["rounds"]) == 3
    assert [round_.name for round_ in sync.snapshot.rounds] == ["Round B", "Round A", "Round C"]


@pytest.mark.asyncio
async def test_question_move_survives_created_question(sync, admin_client, package_tree):
    drag = DragController(sync)
    drag.pick_up(_link(sync.snapshot, "Q1").id)
    drag.drop(sync.snapshot.rounds[1].id)

    created = await sync.create_question(
        title="Q4", content=doc("Q4 text"), round_id=sync.snapshot.rounds[0].id
    )
    assert created is not None
    assert _titles(sync.snapshot) == [["Q2", "Q4"], ["Q3", "Q1"]]

    await _settle(sync)
    assert sync.notifier.errors == []
    assert _titles(sync.snapshot) == [["Q2", "Q4"], ["Q3", "Q1"]]
    tree = admin_client.get(f"/api/packages/{package_tree['id']}").get_json()
    assert [
        [link["question"]["title"] for link in round_["roundQuestions"]]
        for round_ in tree["rounds"]
    ] == [["Q2", "Q4"], ["Q3", "Q1"]]


@pytest.mark.asyncio
async def test_response_that_is_not_json_is_reported(sync, bridge, package_tree):
    bridge.fail_next(
        "GET",
        f"/api/packages/{package_tree['id']}",
        httpx.Response(200, text="<html>maintenance</html>"),
    )
    assert await sync.refresh() is None
    (error,) = sync.notifier.errors
    assert error.title == "Server error"
    assert _titles(sync.snapshot) == [["Q1", "Q2"], ["Q3"]]


@pytest.mark.asyncio
async def test_created_question_is_returned_when_placing_it_fails(sync, bridge):
    round_a = sync.snapshot.rounds[0]
    bridge.fail_next(
        "POST",
        f"/api/rounds/{round_a.id.raw_id}/questions",
        httpx.Response(500, json={"error": "Round is locked."}),
    )
    created = await sync.create_question(
        title="Q4", content=doc("Q4 text"), round_id=round_a.id
    )
    assert created is not None
    assert created.title == "Q4"
    (error,) = sync.notifier.errors
    assert error.message == "Round is locked."
    assert _titles(sync.snapshot)[0] == ["Q1", "Q2"]
