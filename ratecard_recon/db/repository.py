from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Protocol, runtime_checkable

from ratecard_recon.models.rate_card import NormalizedRateCard
from ratecard_recon.models.settlement import SettlementPrediction

"""Persistence boundary for rate cards and the settlement log.

Every engine component talks to storage through ``RateCardRepository``.
Two implementations exist: ``InMemoryRateCardRepository`` (tests, mock
mode) and ``ratecard_recon.db.postgres.PostgresRateCardRepository``.

Contract shared by both:
- ``list_cards`` returns cards in insertion order, archived ones included.
- ``insert_card`` assigns a fresh id and returns the stored card.
- ``update_card`` replaces a card and its slabs/fees wholesale.
- Missing ids yield None / False, never an exception.
- Storage failures raise ``RepositoryError``.
"""

__all__ = [
    "RepositoryError",
    "RateCardRepository",
    "InMemoryRateCardRepository",
]


class RepositoryError(Exception):
    pass


@runtime_checkable
class RateCardRepository(Protocol):
    async def list_cards(self) -> list[NormalizedRateCard]: ...

    async def get_card(self, card_id: str) -> NormalizedRateCard | None: ...

    async def insert_card(self, card: NormalizedRateCard) -> NormalizedRateCard: ...

    async def update_card(self, card: NormalizedRateCard) -> NormalizedRateCard | None: ...

    async def delete_card(self, card_id: str) -> bool: ...

    async def set_archived(self, card_id: str, archived: bool) -> NormalizedRateCard | None: ...

    async def append_settlement(self, record: SettlementPrediction) -> None: ...

    async def list_settlements(self) -> list[SettlementPrediction]: ...


class InMemoryRateCardRepository:
    def __init__(self, cards: list[NormalizedRateCard] | None = None):
        self._cards: dict[str, NormalizedRateCard] = {}
        self._settlements: list[SettlementPrediction] = []
        for card in cards or []:
            stored = card if card.id else card.with_id(uuid.uuid4().hex)
            self._cards[stored.id] = stored

    async def list_cards(self) -> list[NormalizedRateCard]:
        return list(self._cards.values())

    async def get_card(self, card_id: str) -> NormalizedRateCard | None:
        return self._cards.get(card_id)

    async def insert_card(self, card: NormalizedRateCard) -> NormalizedRateCard:
        stored = card.with_id(uuid.uuid4().hex)
        self._cards[stored.id] = stored
        return stored

    async def update_card(self, card: NormalizedRateCard) -> NormalizedRateCard | None:
        if card.id not in self._cards:
            return None
        self._cards[card.id] = card
        return card

    async def delete_card(self, card_id: str) -> bool:
        return self._cards.pop(card_id, None) is not None

    async def set_archived(self, card_id: str, archived: bool) -> NormalizedRateCard | None:
        card = self._cards.get(card_id)
        if card is None:
            return None
        updated = replace(card, archived=archived)
        self._cards[card_id] = updated
        return updated

    async def append_settlement(self, record: SettlementPrediction) -> None:
        self._settlements.append(record)

    async def list_settlements(self) -> list[SettlementPrediction]:
        return list(self._settlements)
