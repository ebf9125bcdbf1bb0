from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from app.core.timeutil import utcnow
from app.db.session import get_sessionmaker
from app.main import app


@pytest_asyncio.fixture
async def client(factory):
    app.dependency_overrides[get_sessionmaker] = lambda: factory
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _login(client, username, password="secret123"):
    r = await client.post("/api/user/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.mark.asyncio
async def test_health(client):
    assert (await client.get("/ping")).json()["ok"] is True
    assert (await client.get("/healthz")).json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_register_login_profile(client):
    r = await client.post("/api/user/register", json={"username": "maria", "password": "secret123"})
    assert r.status_code == 201
    assert r.json()["real_balance"] == "0.00"

    r = await client.post("/api/user/register", json={"username": "maria", "password": "secret123"})
    assert r.status_code == 400 and r.json()["code"] == "username_taken"

    r = await client.post("/api/user/login", json={"username": "maria", "password": "wrong-pass"})
    assert r.status_code == 401

    headers = await _login(client, "maria")
    r = await client.get("/api/user/profile", headers=headers)
    assert r.status_code == 200 and r.json()["username"] == "maria"
    assert (await client.get("/api/user/profile")).status_code == 401


@pytest.mark.asyncio
async def test_full_flow(client, make_user):
    await make_user("boss", is_admin=True)
    admin = await _login(client, "boss")

    r = await client.post("/api/user/register", json={"username": "joao", "password": "secret123"})
    uid = r.json()["id"]
    user = await _login(client, "joao")

    # 充值回调，重复推送按成功应答
    note = {"gateway_id": "pix", "external_id": "dep-1", "user_id": uid, "amount": "100", "status": "approved"}
    r = await client.post("/api/webhooks/deposit", json=note)
    assert r.status_code == 200 and r.json()["duplicate"] is False and r.json()["credited"] is True
    r = await client.post("/api/webhooks/deposit", json=note)
    assert r.json() == {"ok": True, "duplicate": True}

    r = await client.get("/api/wallet/balances", headers=user)
    assert r.json() == {"real": "100.00", "bonus": "100.00"}

    # 期次 + 下注
    scheduled = (utcnow() + timedelta(hours=1)).isoformat()
    r = await client.post("/api/admin/draws", json={"name": "PT Rio", "scheduled_at": scheduled}, headers=admin)
    assert r.status_code == 201
    draw_id = r.json()["id"]
    assert r.json()["local_time"]

    modes = (await client.get("/api/draws/game-modes")).json()
    assert [m["name"] for m in modes] == ["Grupo", "Centena", "Dezena", "Milhar"]
    assert [d["id"] for d in (await client.get("/api/draws?status=pending")).json()] == [draw_id]

    bet = {"draw_id": draw_id, "game_mode_id": 3, "selection": "21", "amount": "10"}
    r = await client.post("/api/bets/place", json=bet, headers=user)
    assert r.status_code == 201, r.text
    assert r.json()["bonus_amount"] == "10.00"

    bad = dict(bet, selection="2")
    r = await client.post("/api/bets/place", json=bad, headers=user)
    assert r.status_code == 400 and r.json()["code"] == "invalid_selection"

    # 非管理员不能开奖
    r = await client.post(f"/api/admin/draws/{draw_id}/result", json={"result": "4321"}, headers=user)
    assert r.status_code == 403

    r = await client.post(f"/api/admin/draws/{draw_id}/result", json={"result": "4321"}, headers=admin)
    assert r.status_code == 200 and r.json()["won"] == 1
    r = await client.post(f"/api/admin/draws/{draw_id}/result", json={"result": "4321"}, headers=admin)
    assert r.status_code == 200 and r.json()["code"] == "draw_already_settled"

    history = (await client.get("/api/bets/history", headers=user)).json()
    assert history[0]["status"] == "won" and history[0]["payout"] == "900.00"
    r = await client.get("/api/wallet/balances", headers=user)
    assert r.json() == {"real": "100.00", "bonus": "990.00"}

    # 提现：只能提真钱，同时只允许一笔
    r = await client.post("/api/wallet/withdraw", json={"amount": "500"}, headers=user)
    assert r.status_code == 400 and r.json()["code"] == "insufficient_funds"
    r = await client.post("/api/wallet/withdraw", json={"amount": "40"}, headers=user)
    assert r.status_code == 201
    tx = r.json()
    r = await client.post("/api/wallet/withdraw", json={"amount": "10"}, headers=user)
    assert r.status_code == 409

    pending = (await client.get("/api/wallet/withdrawal", headers=user)).json()
    assert pending["id"] == tx["id"]

    outcome = {"gateway_id": tx["gateway_id"], "external_id": tx["external_id"], "status": "rejected"}
    r = await client.post("/api/webhooks/withdrawal", json=outcome)
    assert r.json()["transaction"]["status"] == "rejected"
    r = await client.post("/api/webhooks/withdrawal", json=outcome)
    assert r.json()["duplicate"] is True
    assert (await client.get("/api/wallet/withdrawal", headers=user)).json() is None

    # 管理员视图
    r = await client.get(f"/api/admin/users/{uid}/reconcile", headers=admin)
    assert r.json()["consistent"] is True
    r = await client.post(
        f"/api/admin/users/{uid}/adjust",
        json={"balance_class": "real", "amount": "-100", "reason": "chargeback"},
        headers=admin,
    )
    assert r.status_code == 200 and r.json()["real"] == "0.00"
    ledger = (await client.get(f"/api/admin/users/{uid}/ledger", headers=admin)).json()
    assert ledger[-1]["kind"] == "adjustment"
    wallet = (await client.get(f"/api/admin/users/{uid}/wallet", headers=admin)).json()
    assert wallet["bonuses"][0]["remaining_amount"] == "990.00"
    assert (await client.get("/api/admin/users/999999/wallet", headers=admin)).status_code == 404


@pytest.mark.asyncio
async def test_admin_settings(client, make_user):
    await make_user("root", is_admin=True)
    admin = await _login(client, "root")

    cfg = (await client.get("/api/admin/settings", headers=admin)).json()
    assert cfg["first_deposit_bonus_enabled"] is True
    cfg["allow_withdrawals"] = False
    r = await client.put("/api/admin/settings", json=cfg, headers=admin)
    assert r.status_code == 200 and r.json()["allow_withdrawals"] is False

    await make_user("pedro")
    user = await _login(client, "pedro")
    r = await client.post("/api/wallet/withdraw", json={"amount": "1"}, headers=user)
    assert r.status_code == 403 and r.json()["code"] == "feature_disabled"

    r = await client.post("/api/admin/bonuses/expire", headers=admin)
    assert r.json() == {"expired": []}


@pytest.mark.asyncio
async def test_amount_validation_and_bet_limits(client, make_user, deposit, make_draw):
    uid = await make_user("ana")
    user = await _login(client, "ana")

    note = {"gateway_id": "pix", "external_id": "dep-sub", "user_id": uid, "amount": "0.004", "status": "approved"}
    r = await client.post("/api/webhooks/deposit", json=note)
    assert r.status_code == 422

    await deposit(uid, "100")
    draw_id = await make_draw()
    bet = {"draw_id": draw_id, "game_mode_id": 3, "selection": "21", "amount": "0.001"}
    assert (await client.post("/api/bets/place", json=bet, headers=user)).status_code == 422

    r = await client.post("/api/bets/place", json=dict(bet, amount="6000"), headers=user)
    assert r.status_code == 400
    assert r.json()["code"] == "bet_limit_exceeded" and r.json()["limit"] == "max_bet_amount"

    assert (await client.post("/api/wallet/withdraw", json={"amount": "1.234"}, headers=user)).status_code == 422
