def _create(client, headers, name):
    return client.post('/api/boards', json={"name": name}, headers=headers)


def test_board_limit_on_free_plan(client, owner_headers):
    # starter board + 2 more reaches the free plan's limit of 3
    assert _create(client, owner_headers, "Roadmap").status_code == 201
    assert _create(client, owner_headers, "Bugs").status_code == 201

    denied = _create(client, owner_headers, "One too many")
    assert denied.status_code == 403
    assert denied.get_json()["feature"] == "max_boards"
    assert denied.get_json()["limit"] == 3

    boards = client.get('/api/boards', headers=owner_headers).get_json()["boards"]
    assert len(boards) == 3

    assert client.delete(f"/api/boards/{boards[0]['id']}", headers=owner_headers).status_code == 200
    assert _create(client, owner_headers, "Fits again").status_code == 201


def test_create_board_validation(client, owner_headers):
    response = client.post('/api/boards', json={"name": "  "}, headers=owner_headers)

    assert response.status_code == 400
    assert "name" in response.get_json()["details"]


def test_delete_missing_board(client, owner_headers):
    assert client.delete('/api/boards/999', headers=owner_headers).status_code == 404


def test_boards_require_token(client, tenant):
    assert client.get('/api/boards').status_code == 401


def test_tenants_do_not_see_each_other(client, owner_headers, make_tenant):
    make_tenant(name='Globex', slug='globex', email='owner@globex.test')
    login = client.post('/api/auth/login', json={
        "tenant": "globex", "email": "owner@globex.test", "password": "SecurePass123",
    }).get_json()
    globex_headers = {"Authorization": f"Bearer {login['access_token']}"}

    _create(client, owner_headers, "Acme only")

    acme = [b["name"] for b in client.get('/api/boards', headers=owner_headers).get_json()["boards"]]
    globex = [b["name"] for b in client.get('/api/boards', headers=globex_headers).get_json()["boards"]]
    assert "Acme only" in acme
    assert globex == ["Getting Started"]

    # a user id that exists in acme means nothing in globex
    assert client.post('/api/auth/login', json={
        "tenant": "globex", "email": "owner@acme.test", "password": "SecurePass123",
    }).status_code == 401
