from datetime import timedelta

import pytest

from loyalty_points.services.errors import Conflict, RecordingError
from loyalty_points.services.loyalty.redemption_store import (
    EXPIRED,
    PENDING,
    UNUSED,
    USED,
    RedemptionHold,
)


def _hold(clock, code="PSKLTY0042CART00000001", customer_id="42", status=UNUSED, points=100):
    return RedemptionHold.new(
        code=code,
        customer_id=customer_id,
        points_redeemed=points,
        ttl=timedelta(minutes=15),
        now=clock(),
        cart_token="cart",
        status=status,
    )


@pytest.mark.asyncio
async def test_hold_is_visible_until_ttl(store, clock):
    hold = _hold(clock)
    await store.put(hold)

    clock.advance(minutes=14)
    assert (await store.find_by_code(hold.code)) == hold
    assert (await store.find_active_by_customer("42")) == hold

    clock.advance(minutes=2)
    assert await store.find_by_code(hold.code) is None
    assert await store.find_active_by_customer("42") is None
    assert await store.list_for_customer("42") == []


@pytest.mark.asyncio
async def test_put_rejects_second_active_hold(store, clock):
    first = _hold(clock)
    await store.put(first)

    with pytest.raises(Conflict) as exc:
        await store.put(_hold(clock, code="PSKLTY0042CART00000002"))
    assert exc.value.existing_code == first.code
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_reserve_record_release(store, clock):
    hold = _hold(clock, status=UNUSED)
    await store.reserve(hold)
    assert (await store.find_by_code(hold.code)).status == PENDING

    recorded = await store.record(hold.code, "555")
    assert recorded.status == UNUSED
    assert recorded.external_rule_id == "555"

    # only pending reservations are released
    assert await store.release(hold.code) is False
    assert (await store.find_active_by_customer("42")) is not None


@pytest.mark.asyncio
async def test_release_frees_the_customer_slot(store, clock):
    hold = _hold(clock)
    await store.reserve(hold)
    assert await store.release(hold.code) is True
    assert await store.find_active_by_customer("42") is None

    with pytest.raises(RecordingError):
        await store.record(hold.code, "555")


@pytest.mark.asyncio
async def test_reserve_after_lapse_flips_old_hold_to_expired(store, clock):
    old = _hold(clock)
    await store.put(old)
    clock.advance(minutes=20)

    fresh = _hold(clock, code="PSKLTY0042CART00000002")
    await store.reserve(fresh)

    removed = await store.sweep_expired()
    assert [h.code for h in removed] == [old.code]
    assert removed[0].status == EXPIRED
    assert (await store.find_active_by_customer("42")).code == fresh.code


@pytest.mark.asyncio
async def test_mark_used_is_idempotent(store, clock):
    hold = _hold(clock)
    await store.put(hold)

    assert await store.mark_used(hold.code) is True
    first = (await store.stats())[USED]
    clock.advance(minutes=1)
    assert await store.mark_used(hold.code) is True
    assert (await store.stats())[USED] == first == 1

    assert await store.mark_used("PSKLTYNOPE") is False
    # used codes free the customer for a new redemption
    assert await store.find_active_by_customer("42") is None


@pytest.mark.asyncio
async def test_codes_are_looked_up_case_insensitively(store, clock):
    hold = _hold(clock)
    await store.put(hold)

    assert (await store.find_by_code(" psklty0042cart00000001")).code == hold.code
    assert await store.mark_used("psklty0042cart00000001") is True
    assert (await store.find_by_code(hold.code)).status == USED


@pytest.mark.asyncio
async def test_sweep_keeps_used_and_live_holds(store, clock):
    used = _hold(clock, code="PSKLTYUSED", customer_id="1")
    stale = _hold(clock, code="PSKLTYSTALE", customer_id="3")
    for h in (used, stale):
        await store.put(h)
    await store.mark_used(used.code)

    clock.advance(minutes=16)
    live = _hold(clock, code="PSKLTYLIVE", customer_id="2")
    await store.put(live)

    removed = await store.sweep_expired()
    assert [h.code for h in removed] == ["PSKLTYSTALE"]
    assert await store.sweep_expired() == []

    stats = await store.stats()
    assert stats[USED] == 1
    assert stats[UNUSED] == 1


@pytest.mark.asyncio
async def test_purge_used_respects_cutoff(store, clock):
    hold = _hold(clock)
    await store.put(hold)
    await store.mark_used(hold.code)

    clock.advance(hours=23)
    assert await store.purge_used(clock() - timedelta(hours=24)) == 0

    clock.advance(hours=2)
    assert await store.purge_used(clock() - timedelta(hours=24)) == 1
    assert (await store.stats())[USED] == 0
