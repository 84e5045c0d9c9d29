"""Movie catalog, tags, anime CRUD and rolling ratings."""

import pytest

ANIME = {
    "title": "Fullmetal Alchemist: Brotherhood",
    "synopsis": "Two brothers search for the Philosopher's Stone.",
    "cover_image": "https://img.example.org/fma.jpg",
    "episodes": 64,
    "status": "completed",
    "genres": ["Action", "Adventure"],
    "year": 2009,
    "studio": {"name": "Bones", "founded": 1998},
    "characters": [{"name": "Edward Elric", "image": "https://img.example.org/ed.jpg", "role": "main"}],
}


@pytest.fixture
def moderator(make_user):
    return make_user(role="moderator")


@pytest.fixture
def anime(client, moderator, auth_header):
    resp = client.post("/api/catalog/", json=ANIME, headers=auth_header(moderator))
    assert resp.status_code == 201
    return resp.json()


# -----------------------------
# Movies & tags
# -----------------------------
def test_movie_tags_are_created_once(client, db, moderator, auth_header):
    headers = auth_header(moderator)
    first = client.post(
        "/api/catalog/movies",
        json={"title": "Твоє ім'я", "release_year": 2016, "genre": ["drama"], "rating": 9, "tags": ["romance", "anime", "romance"]},
        headers=headers,
    )
    assert first.status_code == 201
    assert db.tag.count_documents({}) == 2

    second = client.post(
        "/api/catalog/movies",
        json={"title": "Weathering With You", "tags": ["romance", "shinkai"]},
        headers=headers,
    )
    assert second.status_code == 201
    assert db.tag.count_documents({}) == 3
    assert db.tag.count_documents({"name": "romance"}) == 1

    first_tags = {t["name"]: t["id"] for t in first.json()["movie"]["tags"]}
    second_tags = {t["name"]: t["id"] for t in second.json()["movie"]["tags"]}
    assert first_tags["romance"] == second_tags["romance"]


def test_movie_slug_is_transliterated(client, moderator, auth_header):
    headers = auth_header(moderator)
    a = client.post("/api/catalog/movies", json={"title": "Твоє ім'я"}, headers=headers).json()["movie"]

    assert a["slug"].startswith("tvo")
    assert a["slug"].isascii()
    assert " " not in a["slug"]

    resp = client.get(f"/api/catalog/movies/{a['slug']}")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Твоє ім'я"


def test_movie_listing_filters_and_sorting(client, moderator, auth_header):
    headers = auth_header(moderator)
    client.post("/api/catalog/movies", json={"title": "Akira", "genre": ["sci-fi"], "rating": 8}, headers=headers)
    client.post("/api/catalog/movies", json={"title": "Perfect Blue", "genre": ["thriller"], "rating": 9}, headers=headers)

    titles = [m["title"] for m in client.get("/api/catalog/movies", params={"sort": "highest_rated"}).json()]
    assert titles == ["Perfect Blue", "Akira"]

    found = client.get("/api/catalog/movies", params={"search": "aki"}).json()
    assert [m["title"] for m in found] == ["Akira"]

    by_genre = client.get("/api/catalog/movies", params={"genre": "thriller"}).json()
    assert [m["title"] for m in by_genre] == ["Perfect Blue"]


def test_movie_update_and_delete(client, moderator, auth_header):
    headers = auth_header(moderator)
    movie = client.post("/api/catalog/movies", json={"title": "Akira"}, headers=headers).json()["movie"]

    resp = client.put(f"/api/catalog/movies/{movie['id']}", json={"title": "Akira (1988)", "rating": 8.5, "tags": ["classic"]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["movie"]["title"] == "Akira (1988)"
    assert [t["name"] for t in resp.json()["movie"]["tags"]] == ["classic"]

    assert client.delete(f"/api/catalog/movies/{movie['id']}", headers=headers).status_code == 200
    assert client.delete(f"/api/catalog/movies/{movie['id']}", headers=headers).status_code == 404
    assert client.get(f"/api/catalog/movies/{movie['slug']}").status_code == 404


def test_movie_validation_and_permissions(client, make_user, moderator, auth_header):
    assert client.post("/api/catalog/movies", json={"title": "X"}).status_code == 401
    assert client.post("/api/catalog/movies", json={"title": "X"}, headers=auth_header(make_user())).status_code == 403
    assert client.post("/api/catalog/movies", json={"title": "   "}, headers=auth_header(moderator)).status_code == 400
    assert client.post("/api/catalog/movies", json={"title": "X", "rating": 11}, headers=auth_header(moderator)).status_code == 422
    assert client.put("/api/catalog/movies/not-an-id", json={"title": "X"}, headers=auth_header(moderator)).status_code == 400


def test_list_tags(client, moderator, auth_header):
    client.post("/api/catalog/movies", json={"title": "A", "tags": ["zeta", "alpha"]}, headers=auth_header(moderator))
    assert [t["name"] for t in client.get("/api/catalog/tags").json()] == ["alpha", "zeta"]


# -----------------------------
# Anime
# -----------------------------
def test_create_anime(anime, moderator):
    assert anime["title"] == ANIME["title"]
    assert anime["rating"] == 0
    assert anime["view_count"] == 0
    assert anime["studio"]["name"] == "Bones"
    assert anime["added_by"]["username"] == moderator["username"]


def test_create_anime_requires_fields_and_role(client, make_user, moderator, auth_header):
    missing = {k: v for k, v in ANIME.items() if k != "studio"}
    resp = client.post("/api/catalog/", json=missing, headers=auth_header(moderator))
    assert resp.status_code == 400

    resp = client.post("/api/catalog/", json=dict(ANIME, year=2999), headers=auth_header(moderator))
    assert resp.status_code == 400

    resp = client.post("/api/catalog/", json=dict(ANIME, status="cancelled"), headers=auth_header(moderator))
    assert resp.status_code == 422

    resp = client.post("/api/catalog/", json=ANIME, headers=auth_header(make_user()))
    assert resp.status_code == 403


def test_get_anime_counts_views(client, anime):
    client.get(f"/api/catalog/{anime['id']}")
    resp = client.get(f"/api/catalog/{anime['id']}")

    assert resp.status_code == 200
    assert resp.json()["view_count"] == 2
    assert client.get("/api/catalog/64b7f0c2a1b2c3d4e5f60718").status_code == 404


def test_list_anime_search_and_filters(client, anime, moderator, auth_header):
    other = dict(ANIME, title="Mob Psycho 100", genres=["Comedy"], year=2016, status="airing", studio={"name": "Bones"})
    client.post("/api/catalog/", json=other, headers=auth_header(moderator))

    body = client.get("/api/catalog/", params={"search": "mob"}).json()
    assert body["total"] == 1
    assert body["anime"][0]["title"] == "Mob Psycho 100"

    body = client.get("/api/catalog/", params={"genres": "Action,Drama"}).json()
    assert [a["title"] for a in body["anime"]] == [ANIME["title"]]

    body = client.get("/api/catalog/", params={"sort_by": "year", "sort_order": "asc"}).json()
    assert [a["year"] for a in body["anime"]] == [2009, 2016]

    body = client.get("/api/catalog/", params={"limit": 1, "page": 2, "sort_by": "title"}).json()
    assert body["total_pages"] == 2
    assert body["current_page"] == 2
    assert len(body["anime"]) == 1


def test_update_and_delete_anime(client, anime, make_user, moderator, auth_header):
    resp = client.put(f"/api/catalog/{anime['id']}", json={"episodes": 65, "status": "airing"}, headers=auth_header(moderator))
    assert resp.status_code == 200
    assert resp.json()["episodes"] == 65
    assert resp.json()["title"] == ANIME["title"]

    resp = client.put(f"/api/catalog/{anime['id']}", json={"episodes": 0}, headers=auth_header(moderator))
    assert resp.status_code == 400

    # moderators may edit but only admins delete
    assert client.delete(f"/api/catalog/{anime['id']}", headers=auth_header(moderator)).status_code == 403
    admin = make_user(role="admin")
    assert client.delete(f"/api/catalog/{anime['id']}", headers=auth_header(admin)).status_code == 200
    assert client.get(f"/api/catalog/{anime['id']}").status_code == 404


def test_studio_meta(client, anime):
    assert client.get("/api/catalog/meta/studios").json() == ["Bones"]


# -----------------------------
# Reviews / rolling rating
# -----------------------------
def test_reviews_update_rolling_average(client, db, anime, make_user, auth_header):
    alice, bob = make_user(), make_user()
    url = f"/api/catalog/{anime['id']}/reviews"

    assert client.post(url, json={"rating": 8}, headers=auth_header(alice)).status_code == 201
    assert client.post(url, json={"rating": 7}, headers=auth_header(bob)).status_code == 201
    doc = db.anime.find_one({"title": ANIME["title"]})
    assert (doc["rating_sum"], doc["total_ratings"], doc["rating"]) == (15, 2, 7.5)

    # re-rating replaces the old score instead of adding a new one
    assert client.post(url, json={"rating": 10, "body": "Masterpiece"}, headers=auth_header(bob)).status_code == 201
    doc = db.anime.find_one({"title": ANIME["title"]})
    assert (doc["rating_sum"], doc["total_ratings"], doc["rating"]) == (18, 2, 9.0)

    reviews = client.get(url).json()
    assert reviews["total"] == 2
    assert {r["user"]["username"] for r in reviews["items"]} == {alice["username"], bob["username"]}


def test_review_validation(client, anime, make_user, auth_header):
    url = f"/api/catalog/{anime['id']}/reviews"
    assert client.post(url, json={"rating": 8}).status_code == 401
    assert client.post(url, json={"rating": 11}, headers=auth_header(make_user())).status_code == 422
