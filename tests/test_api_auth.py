def signup(client, email="ada@example.com", password="s3cret!", name=None):
    body = {"email": email, "password": password}
    if name:
        body["name"] = name
    return client.post("/api/auth/signup", json=body)


def login(client, email="ada@example.com", password="s3cret!"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_signup_creates_zeroed_profile(client):
    user = signup(client).json()["user"]
    profile = client.get("/api/profile", headers={"user-id": user["id"]}).json()
    assert profile["name"] == "ada"
    assert (profile["monthly_income"], profile["fixed_bills"], profile["savings_goal"]) == (0, 0, 0)
    assert profile["telegram_connected"] is False


def test_duplicate_signup_rejected(client):
    signup(client)
    resp = signup(client, email="ADA@example.com")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Email already registered"}


def test_signup_validates_input(client):
    assert signup(client, email="not-an-email").status_code == 400
    assert client.post("/api/auth/signup", json={"email": "a@example.com"}).json() == {
        "error": "Missing required fields"
    }


def test_login_me_logout(client):
    signup(client, name="Ada Lovelace")
    session = login(client).json()["session"]
    token = session["access_token"]

    me = client.get("/api/auth/me", headers=bearer(token)).json()
    assert me["user"]["email"] == "ada@example.com"
    assert me["profile"]["name"] == "Ada Lovelace"

    assert client.post("/api/auth/logout", headers=bearer(token)).json()["success"] is True
    assert client.get("/api/auth/me", headers=bearer(token)).status_code == 401


def test_wrong_password(client):
    signup(client)
    resp = login(client, password="wrong-one")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid login credentials"}


def test_me_without_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Not authenticated"}
    assert client.get("/api/auth/me", headers=bearer("garbage")).status_code == 401


def test_profile_settings_edit(client):
    user_id = signup(client).json()["user"]["id"]
    headers = {"user-id": user_id}
    resp = client.put("/api/profile", headers=headers, json={"monthly_income": 250000, "savings_goal": 50000})
    assert resp.json()["monthly_income"] == 250000

    tips = client.post("/api/ai/get-tips", headers=headers).json()
    assert tips["spendingRatio"] == 0
    assert tips["health"]["status"] == "Outstanding"


def test_profile_missing(client, headers):
    assert client.get("/api/profile", headers=headers).status_code == 404
