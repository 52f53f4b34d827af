from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from typing import Any

from ..db.repository import RateCardRepository
from ..ingest.normalizer import normalize_payload, with_write_defaults
from ..ingest.validator import validate_card
from ..models.config_models import DefaultsConfig
from ..models.rate_card import NormalizedRateCard
from .conflicts import analyze_conflicts

"""Catalog CRUD with the same validate-then-persist path as uploads.

A create / update is rejected when the card has validation issues or
overlaps any active card (exact or similar). Archived cards never block;
un-archiving is rejected when the card would overlap an active one.
"""

__all__ = [
    "RateCardValidationError",
    "RateCardNotFound",
    "CatalogService",
    "catalog_metrics",
]

logger = logging.getLogger(__name__)


class RateCardValidationError(Exception):
    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__(" ".join(self.issues))


class RateCardNotFound(Exception):
    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Rate card not found: {card_id}")


def catalog_metrics(cards: list[NormalizedRateCard], today: date) -> dict[str, Any]:
    """Counts by status plus the average commission of flat cards (archived excluded from status counts)."""
    metrics: dict[str, Any] = {"total": len(cards), "active": 0, "expired": 0, "upcoming": 0, "archived": 0}
    flat_rates: list[float] = []
    for card in cards:
        if card.archived:
            metrics["archived"] += 1
            continue
        metrics[card.status_on(today)] += 1
        if card.commission_type == "flat" and card.commission_percent is not None:
            flat_rates.append(card.commission_percent)
    metrics["flat_count"] = len(flat_rates)
    metrics["avg_flat_commission"] = round(sum(flat_rates) / len(flat_rates), 2) if flat_rates else 0.0
    return metrics


class CatalogService:
    def __init__(self, repository: RateCardRepository, defaults: DefaultsConfig | None = None):
        self.repository = repository
        self.defaults = defaults or DefaultsConfig()

    async def _checked(self, payload: Mapping[str, Any], card_id: str | None) -> NormalizedRateCard:
        result = normalize_payload({**payload, "id": card_id})
        card = result.card
        issues = list(result.issues) + validate_card(card)
        if not issues:
            overlap = analyze_conflicts(card, await self.repository.list_cards()).overlap
            if overlap is not None:
                issues.append(overlap.reason)
        if issues:
            raise RateCardValidationError(issues)
        return with_write_defaults(card, self.defaults)

    async def list_cards(self, today: date | None = None) -> dict[str, Any]:
        today = today or date.today()
        cards = await self.repository.list_cards()
        return {
            "data": [{**c.to_payload(), "status": c.status_on(today)} for c in cards],
            "metrics": catalog_metrics(cards, today),
        }

    async def get_card(self, card_id: str) -> NormalizedRateCard:
        card = await self.repository.get_card(card_id)
        if card is None:
            raise RateCardNotFound(card_id)
        return card

    async def create_card(self, payload: Mapping[str, Any]) -> NormalizedRateCard:
        card = await self._checked(payload, None)
        stored = await self.repository.insert_card(replace(card, archived=False))
        logger.info("rate card created: %s (%s/%s)", stored.id, stored.platform_id, stored.category_id)
        return stored

    async def update_card(self, card_id: str, payload: Mapping[str, Any]) -> NormalizedRateCard:
        current = await self.get_card(card_id)
        card = await self._checked(payload, card_id)
        updated = await self.repository.update_card(replace(card, archived=current.archived))
        if updated is None:
            raise RateCardNotFound(card_id)
        logger.info("rate card updated: %s", card_id)
        return updated

    async def delete_card(self, card_id: str) -> None:
        if not await self.repository.delete_card(card_id):
            raise RateCardNotFound(card_id)
        logger.info("rate card deleted: %s", card_id)

    async def set_archived(self, card_id: str, archived: bool) -> NormalizedRateCard:
        card = await self.get_card(card_id)
        if not archived and card.archived:
            overlap = analyze_conflicts(replace(card, archived=False), await self.repository.list_cards()).overlap
            if overlap is not None:
                raise RateCardValidationError([f"Cannot unarchive: {overlap.reason}"])
        updated = await self.repository.set_archived(card_id, archived)
        if updated is None:
            raise RateCardNotFound(card_id)
        return updated
