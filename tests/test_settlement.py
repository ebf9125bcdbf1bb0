import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select, update

from app.core.errors import (
    BetLimitExceeded, DrawAlreadySettled, DrawClosed, InsufficientFunds, InvalidAmount, InvalidSelection, NotFound,
)
from app.core.timeutil import utcnow
from app.db.session import unit_of_work
from app.models.bet import Bet
from app.models.bonus import Bonus
from app.models.draw import Draw
from app.models.wallet import LedgerEntry, KIND_BET_CREDIT
from app.schemas.bets import BetIn
from app.services import bonus_service
from app.services.balance_service import reconcile, try_reserve
from app.services.bet_service import bet_history, place_bet
from app.tasks.settlement import settle_draw, settle_open_bets, settle_stragglers_once

GRUPO, CENTENA, DEZENA, MILHAR = 1, 2, 3, 4


async def _bet(factory, uid, draw_id, mode, selection, amount, use_bonus=True):
    return await place_bet(
        factory, uid,
        BetIn(draw_id=draw_id, game_mode_id=mode, selection=selection, amount=Decimal(str(amount)), use_bonus=use_bonus),
    )


async def _get(factory, model, pk):
    async with factory() as session:
        return await session.get(model, pk)


async def _consistent(factory, uid):
    async with factory() as session:
        return (await reconcile(session, uid)).consistent


@pytest.mark.asyncio
async def test_bonus_funded_win_splits_payout(factory, make_user, deposit, make_draw, set_quotation, balances):
    await set_quotation(MILHAR, 4)
    uid = await make_user()
    res = await deposit(uid, "100")  # 100 real + 100 bonus, rollover 300
    draw_id = await make_draw()

    bet = await _bet(factory, uid, draw_id, MILHAR, "1234", 200)
    assert (bet.real_amount, bet.bonus_amount, bet.bonus_id) == (Decimal("100.00"), Decimal("100.00"), res.bonus_id)
    assert bet.potential_win == Decimal("800.00")
    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("0.00"), Decimal("0.00"))

    report = await settle_draw(factory, draw_id, "1234")
    assert (report.settled, report.won, report.lost) == (1, 1, 0)
    assert report.paid == Decimal("800.00")

    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("400.00"), Decimal("400.00"))
    bonus = await _get(factory, Bonus, res.bonus_id)
    assert bonus.status == "active"
    assert bonus.amount == Decimal("500.00")
    assert bonus.remaining_amount == Decimal("400.00")
    assert bonus.rollover_progress == Decimal("100.00")

    settled = await _get(factory, Bet, bet.id)
    assert settled.status == "won" and settled.payout == Decimal("800.00")
    assert await _consistent(factory, uid)


@pytest.mark.asyncio
async def test_loss_only_advances_rollover(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    res = await deposit(uid, "100")
    draw_id = await make_draw()
    await _bet(factory, uid, draw_id, DEZENA, "21", 150)

    report = await settle_draw(factory, draw_id, "9999")
    assert (report.won, report.lost) == (0, 1)
    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("50.00"), Decimal("0.00"))
    bonus = await _get(factory, Bonus, res.bonus_id)
    assert bonus.rollover_progress == Decimal("100.00")
    assert await _consistent(factory, uid)


@pytest.mark.asyncio
async def test_settlement_replay_is_noop(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()
    await _bet(factory, uid, draw_id, DEZENA, "21", 10, use_bonus=False)

    await settle_draw(factory, draw_id, "4321")
    before = await balances(uid)

    with pytest.raises(DrawAlreadySettled):
        await settle_draw(factory, draw_id, "4321")
    again = await settle_open_bets(factory, draw_id, "4321")
    assert again.settled == 0
    assert await balances(uid) == before

    async with factory() as session:
        credits = (await session.execute(select(LedgerEntry).where(LedgerEntry.kind == KIND_BET_CREDIT))).scalars().all()
    assert len(credits) == 1 and credits[0].amount == Decimal("900.00")


@pytest.mark.asyncio
async def test_concurrent_settlement_applies_once(factory, make_user, deposit, make_draw, balances):
    users = [await make_user() for _ in range(3)]
    draw_id = await make_draw()
    for uid in users:
        await deposit(uid, "100")
        await _bet(factory, uid, draw_id, DEZENA, "21", 10, use_bonus=False)
        await _bet(factory, uid, draw_id, GRUPO, 6, 10, use_bonus=False)
        await _bet(factory, uid, draw_id, CENTENA, "999", 10, use_bonus=False)

    results = await asyncio.gather(
        settle_draw(factory, draw_id, "4321"),
        settle_draw(factory, draw_id, "4321"),
        return_exceptions=True,
    )
    reports = [r for r in results if not isinstance(r, Exception)]
    assert len(reports) == 1
    assert any(isinstance(r, DrawAlreadySettled) for r in results)
    assert (reports[0].settled, reports[0].won, reports[0].lost) == (9, 6, 3)

    for uid in users:
        # 70 left after stakes, + 900 (Dezena) + 180 (Grupo)
        assert (await balances(uid)).real == Decimal("1150.00")
        assert await _consistent(factory, uid)

    draw = await _get(factory, Draw, draw_id)
    assert draw.status == "settled" and draw.result == "4321"


@pytest.mark.asyncio
async def test_short_result_is_padded(factory, make_user, deposit, make_draw, set_quotation):
    await set_quotation(MILHAR, 2)
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()
    bet = await _bet(factory, uid, draw_id, MILHAR, "0123", 10, use_bonus=False)

    report = await settle_draw(factory, draw_id, "123")
    assert report.result == "0123" and report.won == 1
    assert (await _get(factory, Bet, bet.id)).status == "won"


@pytest.mark.asyncio
async def test_completed_bonus_pays_its_share_to_real(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    res = await deposit(uid, "100")
    draw_id = await make_draw()
    bet = await _bet(factory, uid, draw_id, DEZENA, "21", 100)
    assert bet.bonus_amount == Decimal("100.00") and bet.real_amount == Decimal("0.00")

    async with unit_of_work(factory) as session:
        assert await bonus_service.complete_bonus(session, res.bonus_id)

    await settle_draw(factory, draw_id, "0021")
    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("9100.00"), Decimal("0.00"))
    assert await _consistent(factory, uid)


@pytest.mark.asyncio
async def test_expired_bonus_share_is_forfeited(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    res = await deposit(uid, "100")
    draw_id = await make_draw()
    await _bet(factory, uid, draw_id, DEZENA, "21", 50)

    bonus = await _get(factory, Bonus, res.bonus_id)
    expired = await bonus_service.expire_due_bonuses(factory, now=bonus.expires_at + timedelta(seconds=1))
    assert expired == [res.bonus_id]

    await settle_draw(factory, draw_id, "0021")
    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("100.00"), Decimal("0.00"))
    assert await _consistent(factory, uid)


@pytest.mark.asyncio
async def test_stragglers_are_settled(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()
    bet = await _bet(factory, uid, draw_id, DEZENA, "21", 10, use_bonus=False)

    # draw switched but the bet run never happened
    async with unit_of_work(factory) as session:
        await session.execute(
            update(Draw).where(Draw.id == draw_id).values(status="settled", result="4321", settled_at=utcnow())
        )

    assert await settle_stragglers_once(factory) == [bet.id]
    assert await settle_stragglers_once(factory) == []
    assert (await balances(uid)).real == Decimal("990.00")


@pytest.mark.asyncio
async def test_placement_rules(factory, make_user, deposit, make_draw, configure, balances):
    uid = await make_user()
    await deposit(uid, "100")
    open_draw = await make_draw()
    closing = await make_draw(starts_in=timedelta(seconds=30))

    with pytest.raises(DrawClosed):
        await _bet(factory, uid, closing, DEZENA, "21", 10)
    with pytest.raises(InvalidSelection):
        await _bet(factory, uid, open_draw, MILHAR, "12345", 10)
    with pytest.raises(NotFound):
        await _bet(factory, uid, 424242, DEZENA, "21", 10)
    with pytest.raises(NotFound):
        await _bet(factory, uid, open_draw, 99, "21", 10)
    with pytest.raises(InsufficientFunds):
        await _bet(factory, uid, open_draw, DEZENA, "21", 250)

    # bonus bets switched off: real funds only
    await configure(allow_bonus_bets=False)
    bet = await _bet(factory, uid, open_draw, DEZENA, "21", 30)
    assert (bet.real_amount, bet.bonus_amount, bet.bonus_id) == (Decimal("30.00"), Decimal("0.00"), None)

    await settle_draw(factory, open_draw, "1111")
    with pytest.raises(DrawClosed):
        await _bet(factory, uid, open_draw, DEZENA, "21", 10)

    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("70.00"), Decimal("100.00"))
    async with factory() as session:
        assert [x.id for x in await bet_history(session, uid)] == [bet.id]


@pytest.mark.asyncio
async def test_concurrent_bets_never_overdraw(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()

    results = await asyncio.gather(
        *(_bet(factory, uid, draw_id, DEZENA, "21", 30, use_bonus=False) for _ in range(6)),
        return_exceptions=True,
    )
    placed = [r for r in results if not isinstance(r, Exception)]
    assert len(placed) == 3
    assert all(isinstance(r, InsufficientFunds) for r in results if isinstance(r, Exception))
    assert (await balances(uid)).real == Decimal("10.00")
    assert await _consistent(factory, uid)


@pytest.mark.asyncio
async def test_unknown_draw(factory):
    with pytest.raises(NotFound):
        await settle_draw(factory, 31337, "1234")


@pytest.mark.asyncio
async def test_bet_limits(factory, make_user, deposit, make_draw, configure, balances):
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()

    with pytest.raises(BetLimitExceeded) as e:
        await _bet(factory, uid, draw_id, DEZENA, "21", "0.10")
    assert e.value.details["limit"] == "min_bet_amount"

    # Milhar pays 9000x: R$10 would win 90000
    with pytest.raises(BetLimitExceeded) as e:
        await _bet(factory, uid, draw_id, MILHAR, "1234", 10)
    assert e.value.details["limit"] == "max_payout"

    await configure(max_bet_amount=Decimal("20"), max_payout=Decimal("0"))
    with pytest.raises(BetLimitExceeded) as e:
        await _bet(factory, uid, draw_id, DEZENA, "21", 25)
    assert e.value.details["limit"] == "max_bet_amount"

    # payout limit switched off
    bet = await _bet(factory, uid, draw_id, MILHAR, "1234", 10)
    assert bet.potential_win == Decimal("90000.00")

    b = await balances(uid)
    assert (b.real, b.bonus) == (Decimal("100.00"), Decimal("90.00"))
    async with factory() as session:
        assert [x.id for x in await bet_history(session, uid)] == [bet.id]


@pytest.mark.asyncio
async def test_sub_cent_stakes_are_rejected(factory, make_user, deposit, make_draw, balances):
    uid = await make_user()
    await deposit(uid, "100")
    draw_id = await make_draw()

    with pytest.raises(ValidationError):
        await _bet(factory, uid, draw_id, DEZENA, "21", "0.001")

    async with unit_of_work(factory) as session:
        with pytest.raises(InvalidAmount):
            await try_reserve(session, uid, Decimal("0.004"), allow_bonus=True, related_id=1)
    assert (await balances(uid)).real == Decimal("100.00")
