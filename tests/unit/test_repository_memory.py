from __future__ import annotations

import asyncio
from dataclasses import replace

from conftest import make_card, make_tiered_card

from ratecard_recon.db.repository import InMemoryRateCardRepository, RateCardRepository


def test_satisfies_protocol():
    assert isinstance(InMemoryRateCardRepository(), RateCardRepository)


def test_seed_cards_keep_ids_and_order():
    repo = InMemoryRateCardRepository([make_card(id="a"), make_tiered_card(), make_card(id="b", category_id="shoes")])
    cards = asyncio.run(repo.list_cards())
    assert [c.id for c in cards][0] == "a"
    assert cards[1].id and len(cards[1].id) == 32
    assert cards[2].id == "b"


def test_insert_assigns_fresh_id():
    repo = InMemoryRateCardRepository()
    first = asyncio.run(repo.insert_card(make_card(id="ignored")))
    second = asyncio.run(repo.insert_card(make_card()))
    assert first.id != "ignored"
    assert first.id != second.id
    assert asyncio.run(repo.get_card(first.id)) == first


def test_update_and_missing_ids():
    repo = InMemoryRateCardRepository([make_card(id="a")])
    updated = asyncio.run(repo.update_card(make_card(id="a", commission_percent=15.0)))
    assert updated.commission_percent == 15.0
    assert asyncio.run(repo.get_card("a")).commission_percent == 15.0
    assert asyncio.run(repo.update_card(make_card(id="zzz"))) is None
    assert asyncio.run(repo.get_card("zzz")) is None
    assert asyncio.run(repo.set_archived("zzz", True)) is None
    assert asyncio.run(repo.delete_card("zzz")) is False


def test_archive_and_delete():
    repo = InMemoryRateCardRepository([make_card(id="a")])
    archived = asyncio.run(repo.set_archived("a", True))
    assert archived == replace(make_card(id="a"), archived=True)
    assert asyncio.run(repo.list_cards())[0].archived is True
    assert asyncio.run(repo.delete_card("a")) is True
    assert asyncio.run(repo.list_cards()) == []


def test_settlement_log_is_append_only_copy():
    repo = InMemoryRateCardRepository()
    asyncio.run(repo.append_settlement("first"))
    listed = asyncio.run(repo.list_settlements())
    listed.append("mutated")
    assert asyncio.run(repo.list_settlements()) == ["first"]
