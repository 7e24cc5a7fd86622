from pathlib import Path

import pytest

from quiz_admin.app import create_app


def doc(*paragraphs):
    """Build a rich-text document with one paragraph per argument."""
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]}
            for text in paragraphs
        ],
    }


def register(client, username, password="secret123"):
    response = client.post(
        "/api/register", json={"username": username, "password": password}
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["user"]


@pytest.fixture
def app(tmp_path: Path):
    """Flask app backed by a throwaway sqlite file."""
    return create_app(
        {
            "TESTING": True,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'quiz_admin.sqlite3'}",
        }
    )


@pytest.fixture
def admin_client(app):
    """Client logged in as the first registered user, who becomes admin."""
    client = app.test_client()
    register(client, "admin")
    return client


@pytest.fixture
def author_client(app, admin_client):
    client = app.test_client()
    register(client, "author")
    return client


@pytest.fixture
def package_tree(admin_client):
    """A package with Round A [Q1, Q2] and Round B [Q3]; returns the tree."""
    package = admin_client.post("/api/packages", json={"title": "Friday quiz"}).get_json()
    rounds = []
    for name in ("Round A", "Round B"):
        rounds.append(
            admin_client.post(
                "/api/rounds", json={"name": name, "packageId": package["id"]}
            ).get_json()
        )
    for round_, titles in zip(rounds, (["Q1", "Q2"], ["Q3"])):
        for title in titles:
            question = admin_client.post(
                "/api/questions",
                json={"title": title, "content": doc(f"{title} text"), "answer": f"{title} answer"},
            ).get_json()
            admin_client.post(
                f"/api/rounds/{round_['id']}/questions",
                json={"questionId": question["id"]},
            )
    return admin_client.get(f"/api/packages/{package['id']}").get_json()


def package_data(*rounds, package_id=1):
    """Server-shaped package JSON. ``rounds`` are ``(round_id, [(link_id, question_id), ...])``."""
    payload_rounds = []
    for round_index, (round_id, links) in enumerate(rounds):
        payload_rounds.append(
            {
                "id": round_id,
                "name": f"Round {round_id}",
                "description": "",
                "questionCount": 5,
                "orderIndex": round_index,
                "packageId": package_id,
                "roundQuestions": [
                    {
                        "id": link_id,
                        "roundId": round_id,
                        "questionId": question_id,
                        "orderIndex": link_index,
                        "question": {
                            "id": question_id,
                            "title": f"Q{question_id}",
                            "content": doc(f"Question {question_id}"),
                            "answer": f"Answer {question_id}",
                        },
                    }
                    for link_index, (link_id, question_id) in enumerate(links)
                ],
            }
        )
    return {"id": package_id, "title": "Quiz night", "rounds": payload_rounds}
