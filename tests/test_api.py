from __future__ import annotations


AUTH_SUPER = {"mid": 1, "password": "pw1"}
AUTH_FIVE = {"mid": 5, "password": "pw5"}


def test_ping_and_status(client):
    resp = client.get("/admin/ping?a=2&b=3")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "success", "data": {"sum": 5}, "message": "ok"}

    status = client.get("/admin/status").get_json()["data"]
    assert status["ready"] is True
    assert status["row_counts"]["user_info"] == 20


def test_register_and_fetch_user(client):
    resp = client.post("/users/", json={"name": "newbie", "password": "secret", "sex": "男"})
    assert resp.status_code == 201
    mid = resp.get_json()["data"]["mid"]
    info = client.get(f"/users/{mid}").get_json()["data"]
    assert info["mid"] == mid
    assert info["following"] == []


def test_validation_errors_use_error_envelope(client):
    resp = client.post("/users/", json={"name": "", "password": "x", "sex": "男"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["status"] == "error"
    assert body["data"] == {}
    assert body["message"]


def test_missing_auth_is_forbidden(client):
    resp = client.post("/videos/", json={"title": "x", "duration": 30})
    assert resp.status_code == 403
    assert resp.get_json()["status"] == "error"


def test_post_and_search_video(client):
    resp = client.post(
        "/videos/",
        json={"auth": {"qq": "qq4"}, "title": "接口测试视频", "description": "hello", "duration": 42},
    )
    assert resp.status_code == 201
    bv = resp.get_json()["data"]["bv"]

    review = client.post(f"/videos/{bv}/review", json={"auth": AUTH_SUPER})
    assert review.get_json()["data"]["reviewed"] is True

    found = client.post(
        "/videos/search",
        json={"auth": AUTH_FIVE, "keywords": "接口", "page_size": 5, "page_num": 1},
    )
    assert found.get_json()["data"]["bvs"] == [bv]


def test_update_and_delete_video(client):
    resp = client.put("/videos/BV1", json={"auth": {"mid": 2, "password": "pw2"}, "title": "改名", "duration": 100})
    assert resp.get_json()["data"]["needs_review"] is True
    resp = client.delete("/videos/BV1", json={"auth": AUTH_FIVE})
    assert resp.status_code == 403
    resp = client.delete("/videos/BV1", json={"auth": AUTH_SUPER})
    assert resp.status_code == 200


def test_video_statistics(client):
    assert client.get("/videos/BV1/hotspot").get_json()["data"]["chunks"] == [0]
    assert client.get("/videos/BV2/view-rate").get_json()["data"]["rate"] == 0.75
    assert client.get("/videos/missing/view-rate").status_code == 400


def test_video_toggles(client):
    resp = client.post("/videos/BV1/collect", json={"auth": AUTH_FIVE})
    assert resp.get_json()["data"]["collected"] is True
    resp = client.post("/videos/BV1/like", json={"auth": AUTH_FIVE})
    assert resp.get_json()["data"]["liked"] is True
    resp = client.post("/videos/BV2/coin", json={"auth": {"mid": 4, "password": "pw4"}})
    assert resp.get_json()["data"]["coined"] is True


def test_danmu_endpoints(client):
    resp = client.get("/danmus/?bv=BV1&start=0&end=10&filter=true")
    assert resp.get_json()["data"]["danmu_ids"] == [3, 1]
    assert client.get("/danmus/?bv=BV1&start=0&end=1000").status_code == 400

    sent = client.post("/danmus/", json={"auth": AUTH_FIVE, "bv": "BV1", "content": "hi", "time": 9})
    assert sent.status_code == 201
    danmu_id = sent.get_json()["data"]["danmu_id"]
    liked = client.post(f"/danmus/{danmu_id}/like", json={"auth": {"mid": 3, "password": "pw3"}})
    assert liked.get_json()["data"]["liked"] is True


def test_follow_and_recommend(client):
    resp = client.post("/users/4/follow", json={"auth": AUTH_FIVE})
    assert resp.get_json()["data"]["following"] is True

    assert client.get("/recommend/next/BV1").get_json()["data"]["bvs"] == ["BV2", "BV3"]
    general = client.get("/recommend/general?page_size=2&page_num=1").get_json()["data"]["bvs"]
    assert general == ["BV1", "BV2"]
    videos = client.post("/recommend/videos", json={"auth": AUTH_FIVE, "page_size": 10, "page_num": 1})
    assert videos.get_json()["data"]["bvs"] == ["BV4"]
    friends = client.post("/recommend/friends", json={"auth": AUTH_FIVE, "page_size": 10, "page_num": 1})
    assert friends.get_json()["data"]["mids"] == [6, 7]
    assert client.get("/recommend/general?page_size=0").status_code == 400


def test_delete_account_endpoint(client):
    resp = client.delete("/users/6", json={"auth": {"mid": 6, "password": "pw6"}})
    assert resp.status_code == 200
    assert client.get("/users/6").status_code == 400


def test_truncate_requires_super_user(client):
    resp = client.post("/admin/truncate", json={"auth": AUTH_FIVE})
    assert resp.status_code == 403

    resp = client.post("/admin/truncate", json={"auth": AUTH_SUPER})
    assert resp.status_code == 200
    counts = client.get("/admin/status").get_json()["data"]["row_counts"]
    assert all(count == 0 for count in counts.values())


def test_unknown_route_returns_envelope(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["status"] == "error"
