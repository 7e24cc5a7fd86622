import pytest

from conftest import doc, register
from quiz_admin.services import ai_service


def _create(client, **fields):
    body = {"title": "Capitals", "content": doc("Capital of France?"), "answer": "Paris"}
    body.update(fields)
    response = client.post("/api/questions", json=body)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_create_question_defaults(admin_client):
    question = admin_client.post(
        "/api/questions", json={"content": doc("Untitled"), "answer": " 42 "}
    ).get_json()
    assert question["title"] == "Question"
    assert question["answer"] == "42"
    assert question["difficulty"] == 1
    assert question["isGenerated"] is False
    assert question["author"]["username"] == "admin"


@pytest.mark.parametrize(
    "body",
    [
        {"title": "No content"},
        {"title": "Text content", "content": "plain string"},
        {"title": "Too hard", "content": {"type": "doc", "content": []}, "difficulty": 9},
    ],
)
def test_create_question_rejects_invalid_input(admin_client, body):
    assert admin_client.post("/api/questions", json=body).status_code == 400


def test_update_question_fields(admin_client):
    question = _create(admin_client)
    response = admin_client.put(
        f"/api/questions/{question['id']}",
        json={"answer": "Paris, France", "difficulty": 2, "factChecked": True},
    )
    assert response.status_code == 200
    updated = response.get_json()
    assert updated["answer"] == "Paris, France"
    assert updated["difficulty"] == 2
    assert updated["factChecked"] is True
    assert updated["content"] == doc("Capital of France?")


def test_update_question_rejects_empty_title(admin_client):
    question = _create(admin_client)
    response = admin_client.put(f"/api/questions/{question['id']}", json={"title": " "})
    assert response.status_code == 400


def test_authors_cannot_edit_other_authors_questions(admin_client, author_client):
    question = _create(admin_client)
    response = author_client.put(f"/api/questions/{question['id']}", json={"answer": "Lyon"})
    assert response.status_code == 403
    assert response.get_json()["error"] == "You cannot modify this question."


def test_editors_cannot_edit_other_authors_questions(app, admin_client):
    question = _create(admin_client)
    editor_client = app.test_client()
    editor = register(editor_client, "ed")
    promoted = admin_client.put(f"/api/users/{editor['id']}/role", json={"role": "editor"})
    assert promoted.get_json()["user"]["role"] == "editor"

    response = editor_client.put(f"/api/questions/{question['id']}", json={"answer": "Lyon"})
    assert response.status_code == 403
    assert editor_client.delete(f"/api/questions/{question['id']}").status_code == 403
    assert admin_client.get(f"/api/questions/{question['id']}").get_json()["answer"] == "Paris"


def test_update_missing_question_is_not_found(admin_client):
    assert admin_client.put("/api/questions/404", json={"answer": "x"}).status_code == 404


def test_search_questions_paginates(admin_client):
    for index in range(3):
        _create(admin_client, title=f"History {index}", answer=f"Year {index}")
    _create(admin_client, title="Science", answer="Oxygen")

    page = admin_client.get("/api/questions?q=History&page=1&limit=2").get_json()
    assert page["total"] == 3
    assert page["limit"] == 2
    assert len(page["questions"]) == 2

    second = admin_client.get("/api/questions?q=History&page=2&limit=2").get_json()
    assert len(second["questions"]) == 1

    everything = admin_client.get("/api/questions").get_json()
    assert everything["total"] == 4


def test_search_matches_text_not_document_structure(admin_client, package_tree):
    for word in ("paragraph", "doc", "type"):
        assert admin_client.get(f"/api/questions?q={word}").get_json()["total"] == 0

    found = admin_client.get("/api/questions", query_string={"q": "Q2 text"}).get_json()
    assert [question["title"] for question in found["questions"]] == ["Q2"]


def test_search_treats_wildcards_literally(admin_client):
    _create(admin_client, title="Growth", answer="100% organic")
    _create(admin_client, title="Snake", answer="snake_case")
    _create(admin_client, title="Other", answer="plain")

    percent = admin_client.get("/api/questions", query_string={"q": "%"}).get_json()
    assert [question["title"] for question in percent["questions"]] == ["Growth"]
    underscore = admin_client.get("/api/questions", query_string={"q": "_"}).get_json()
    assert [question["title"] for question in underscore["questions"]] == ["Snake"]

    edited = percent["questions"][0]
    admin_client.put(f"/api/questions/{edited['id']}", json={"content": doc("Rewritten prompt")})
    assert admin_client.get("/api/questions?q=Rewritten").get_json()["total"] == 1


def test_delete_question_repacks_rounds(admin_client, package_tree):
    round_a = package_tree["rounds"][0]
    first = round_a["roundQuestions"][0]["questionId"]
    assert admin_client.delete(f"/api/questions/{first}").get_json() == {"success": True}

    tree = admin_client.get(f"/api/packages/{package_tree['id']}").get_json()
    links = tree["rounds"][0]["roundQuestions"]
    assert [link["question"]["title"] for link in links] == ["Q2"]
    assert [link["orderIndex"] for link in links] == [0]


def test_generate_questions_stores_generated_questions(admin_client, monkeypatch):
    calls = {}

    def fake_generate(**kwargs):
        calls.update(kwargs)
        return [
            {"title": "Rivers", "question": "Longest river?\nIn Africa.", "answer": "Nile", "difficulty": 2},
            {"title": "Empty", "question": "   ", "answer": "skip me"},
        ]

    monkeypatch.setattr(ai_service, "generate_questions", fake_generate)
    response = admin_client.post(
        "/api/questions/generate", json={"prompt": "geography", "count": 2, "topic": "Geo"}
    )
    assert response.status_code == 201
    created = response.get_json()
    assert len(created) == 1
    assert created[0]["isGenerated"] is True
    assert created[0]["topic"] == "Geo"
    assert created[0]["difficulty"] == 2
    assert created[0]["content"] == doc("Longest river?", "In Africa.")
    assert calls["count"] == 2
    assert calls["prompt"] == "geography"


def test_generate_questions_reports_upstream_failure(admin_client, monkeypatch):
    def broken(**kwargs):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(ai_service, "generate_questions", broken)
    response = admin_client.post("/api/questions/generate", json={"prompt": "x", "count": 1})
    assert response.status_code == 502
    assert "quota exceeded" in response.get_json()["error"]


def test_generate_questions_validates_count(admin_client):
    response = admin_client.post("/api/questions/generate", json={"prompt": "x", "count": 50})
    assert response.status_code == 400


def test_validate_question(admin_client, monkeypatch):
    monkeypatch.setattr(
        ai_service,
        "validate_question",
        lambda **kwargs: {"isValid": True, "suggestions": [f"Checked {kwargs['title']}"]},
    )
    response = admin_client.post(
        "/api/questions/validate", json={"title": "Capitals", "content": doc("Capital?")}
    )
    assert response.status_code == 200
    assert response.get_json()["suggestions"] == ["Checked Capitals"]


def test_fact_check_marks_question(admin_client, monkeypatch):
    question = _create(admin_client)
    monkeypatch.setattr(
        ai_service,
        "fact_check_question",
        lambda **kwargs: {"isCorrect": True, "explanation": "Correct.", "sources": []},
    )
    response = admin_client.post(f"/api/questions/{question['id']}/fact-check")
    assert response.status_code == 200
    body = response.get_json()
    assert body["result"]["isCorrect"] is True
    assert body["question"]["factChecked"] is True
    assert body["question"]["factCheckDate"]
