from datetime import datetime, timedelta, timezone

from bson import ObjectId
from conftest import LONG_CONTENT, auth, run


def new_post(topic, **overrides):
    return {
        "title": "My first post",
        "content": LONG_CONTENT,
        "topic": str(topic["_id"]),
        "published": True,
        **overrides,
    }


def test_publish_list_and_edit_scenario(client, make_user, make_topic):
    author = make_user("alice")
    stranger = make_user("bobby")
    topic = make_topic()

    created = client.post("/api/v1/posts", json=new_post(topic), headers=auth(author))
    assert created.status_code == 201
    post_id = created.json()["post"]["_id"]

    listed = client.get("/api/v1/posts").json()
    assert post_id in [post["_id"] for post in listed["posts"]]

    denied = client.patch(f"/api/v1/posts/{post_id}", json={"title": "Hijacked title"}, headers=auth(stranger))
    assert denied.status_code == 403

    allowed = client.patch(f"/api/v1/posts/{post_id}", json={"title": "Updated title"}, headers=auth(author))
    assert allowed.status_code == 200
    assert allowed.json()["post"]["title"] == "Updated title"


def test_put_is_also_a_partial_update(client, make_user, make_post, find):
    author = make_user("alice")
    post = make_post(author)

    response = client.put(f"/api/v1/posts/{post['_id']}", json={"published": False}, headers=auth(author))

    assert response.status_code == 200
    stored = find("posts", post["_id"])
    assert stored["published"] is False
    assert stored["title"] == post["title"]
    assert stored["version"] == 1


def test_admin_can_edit_any_post(client, make_user, make_post, admin):
    post = make_post(make_user("alice"))
    response = client.patch(f"/api/v1/posts/{post['_id']}", json={"title": "Edited by admin"}, headers=auth(admin))
    assert response.status_code == 200


def test_post_update_with_stale_version(client, make_user, make_post):
    author = make_user("alice")
    post = make_post(author)
    response = client.patch(
        f"/api/v1/posts/{post['_id']}",
        json={"title": "Updated title"},
        headers={**auth(author), "If-Match": "5"},
    )
    assert response.status_code == 409


def test_create_post_validation(client, make_user, make_topic):
    author = make_user("alice")
    topic = make_topic()

    short = client.post("/api/v1/posts", json=new_post(topic, content="too short"), headers=auth(author))
    assert short.status_code == 400
    assert short.json()["errors"][0]["field"] == "content"

    missing_flag = new_post(topic)
    del missing_flag["published"]
    assert client.post("/api/v1/posts", json=missing_flag, headers=auth(author)).status_code == 400

    bad_topic = client.post("/api/v1/posts", json={**new_post(topic), "topic": "nope"}, headers=auth(author))
    assert bad_topic.status_code == 400

    unknown_topic = client.post("/api/v1/posts", json={**new_post(topic), "topic": str(ObjectId())}, headers=auth(author))
    assert unknown_topic.status_code == 404


def test_create_post_requires_login(client, make_topic):
    assert client.post("/api/v1/posts", json=new_post(make_topic())).status_code == 401


def test_drafts_hidden_from_list_and_strangers(client, make_user, make_post):
    author = make_user("alice")
    draft = make_post(author, published=False)

    assert client.get("/api/v1/posts").json()["meta"]["total"] == 0
    assert client.get(f"/api/v1/posts/{draft['_id']}", headers=auth(make_user("bobby"))).status_code == 403
    assert client.get(f"/api/v1/posts/{draft['_id']}").status_code == 401
    assert client.get(f"/api/v1/posts/{draft['_id']}", headers=auth(author)).status_code == 200


def test_get_post_populates_references(client, make_user, make_topic, make_post, make_comment):
    author = make_user("alice")
    post = make_post(author, topic=make_topic("Travel"))
    make_comment(make_user("bobby"), post)

    body = client.get(f"/api/v1/posts/{post['_id']}").json()["post"]

    assert body["author"]["username"] == "alice"
    assert "password" not in body["author"]
    assert body["topic"]["name"] == "Travel"
    assert body["comments"][0]["author"]["username"] == "bobby"


def test_list_pagination_total(client, make_user, make_post):
    author = make_user("alice")
    for index in range(5):
        make_post(author, title=f"Post number {index}")
    make_post(author, published=False)

    page = client.get("/api/v1/posts", params={"limit": 2, "offset": 2}).json()

    assert len(page["posts"]) == 2
    assert page["meta"]["total"] == 5


def test_following_feed(client, make_user, make_post):
    followed = make_user("bobby")
    other = make_user("carol")
    reader = make_user("alice", following=[followed["_id"]])
    make_post(followed, title="From bobby")
    make_post(other, title="From carol")

    feed = client.get("/api/v1/posts/following", headers=auth(reader)).json()

    assert [post["title"] for post in feed["posts"]] == ["From bobby"]


##########
# Likes
##########
def test_like_once_then_unlike(client, make_user, make_post, find):
    user = make_user("alice")
    post = make_post(make_user("bobby"))

    liked = client.put(f"/api/v1/posts/{post['_id']}/like", headers=auth(user))
    assert liked.status_code == 200
    assert liked.json()["likesCount"] == 1

    again = client.put(f"/api/v1/posts/{post['_id']}/like", headers=auth(user))
    assert again.status_code == 400
    assert len(find("posts", post["_id"])["likes"]) == 1

    assert client.get(f"/api/v1/posts/{post['_id']}/likes").json() == {"likesCount": 1}

    unliked = client.put(f"/api/v1/posts/{post['_id']}/unlike", headers=auth(user))
    assert unliked.status_code == 200
    assert find("posts", post["_id"])["likes"] == []


def test_unlike_without_like_is_an_error(client, make_user, make_post):
    post = make_post(make_user("bobby"))
    response = client.put(f"/api/v1/posts/{post['_id']}/unlike", headers=auth(make_user("alice")))
    assert response.status_code == 400


def test_like_missing_post(client, make_user):
    response = client.put(f"/api/v1/posts/{ObjectId()}/like", headers=auth(make_user("alice")))
    assert response.status_code == 404


##########
# Saving and deleting
##########
def test_toggle_saved_post(client, make_user, make_post, find):
    user = make_user("alice")
    post = make_post(make_user("bobby"))

    saved = client.put(f"/api/v1/posts/saved-posts/{post['_id']}", headers=auth(user)).json()
    assert saved == {"saved": True, "savedPosts": [str(post["_id"])]}

    unsaved = client.put(f"/api/v1/posts/saved-posts/{post['_id']}", headers=auth(user)).json()
    assert unsaved == {"saved": False, "savedPosts": []}


def test_delete_post_removes_comments_and_saved_references(client, db, make_user, make_post, make_comment, find):
    author = make_user("alice")
    reader = make_user("bobby")
    post = make_post(author)
    make_comment(reader, post)
    run(db.users.update_one({"_id": reader["_id"]}, {"$push": {"savedPosts": post["_id"]}}))

    assert client.delete(f"/api/v1/posts/{post['_id']}", headers=auth(reader)).status_code == 403

    response = client.delete(f"/api/v1/posts/{post['_id']}", headers=auth(author))

    assert response.status_code == 200
    assert find("posts", post["_id"]) is None
    assert run(db.comments.count_documents({"post": post["_id"]})) == 0
    assert find("users", reader["_id"])["savedPosts"] == []


##########
# Admin preview
##########
def test_preview_is_admin_only(client, make_user, make_post):
    author = make_user("alice")
    make_post(author, published=False)

    assert client.get("/api/v1/posts/preview", headers=auth(author)).status_code == 403


def test_popular_time_window_is_passed_to_the_pipeline(client, monkeypatch):
    captured = {}

    def fake_pipeline(start, page):
        captured["start"] = start
        return [{"$match": {"published": True}}, {"$limit": page.limit}]

    monkeypatch.setattr("routers.posts.popular_posts_pipeline", fake_pipeline)
    monkeypatch.setattr("routers.posts.unpack_facet", lambda result: (result, len(result)))

    response = client.get("/api/v1/posts/popular", params={"timeRange": "lastWeek"})

    assert response.status_code == 200
    now = datetime.now(timezone.utc)
    assert now - timedelta(days=7, minutes=1) < captured["start"] < now - timedelta(days=6)
    assert client.get("/api/v1/posts/popular", params={"timeRange": "decade"}).status_code == 400
