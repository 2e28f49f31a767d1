"""
Market & trade-route settlement.

Sell offers are standing listings; accepting one creates an external trade route.
Internal transfers are unpriced routes between two facilities of the same company,
at least one of them a storage facility. Every route is settled once per tick in
creation order; a route either moves its full amount or is marked failed.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

import facilities as F
import objects as G
from register import Catalog

logger = logging.getLogger(__name__)


class SettlementSummary(BaseModel):
    tick: int
    settled: int = 0
    failed: int = 0
    money_moved: float = 0.0


class Market:
    def __init__(self, world: G._WorldState, catalog: Catalog):
        self.world = world
        self.catalog = catalog

    # ── helpers ────────────────────────────────────────────────────────────
    def _owned_stock_facility(self, company_id: int, facility_id: int) -> Optional[G._FacilityInstance]:
        facility = self.world.facilities.get(facility_id)
        if facility is None or facility.company_id != company_id or not facility.category.has_inventory:
            return None
        return facility

    def committed(self, offer_id: int) -> float:
        return sum(r.amount_per_tick for r in self.world.routes.values() if r.offer_id == offer_id)

    def _link(self, route: G._TradeRoute) -> None:
        """Rewrite the cached route view on both endpoints."""
        common = dict(
            route_id=route.instance_id,
            resource=route.resource,
            amount_per_tick=route.amount_per_tick,
            price_per_unit=route.price_per_unit,
            is_internal=route.is_internal,
        )
        seller = self.world.facilities.get(route.seller_facility_id)
        buyer = self.world.facilities.get(route.buyer_facility_id)
        if seller is not None:
            seller.link_route(G._RouteLink(direction="out", **common))
        if buyer is not None:
            buyer.link_route(G._RouteLink(direction="in", **common))

    def _unlink(self, route: G._TradeRoute) -> None:
        for fid in (route.seller_facility_id, route.buyer_facility_id):
            facility = self.world.facilities.get(fid)
            if facility is not None:
                facility.unlink_route(route.instance_id)

    # ── offers ─────────────────────────────────────────────────────────────
    def create_offer(self, company_id: int, facility_id: int, resource: str,
                     amount: float, price: float) -> Optional[G._SellOffer]:
        facility = self._owned_stock_facility(company_id, facility_id)
        if facility is None or resource not in self.catalog.resources or amount <= 0 or price < 0:
            logger.debug("Offer rejected: company=%s facility=%s resource=%s", company_id, facility_id, resource)
            return None
        offer = G._SellOffer(
            seller_company_id=company_id,
            seller_facility_id=facility_id,
            resource=resource,
            amount_available=amount,
            amount_in_stock=amount,
            price_per_unit=price,
        )
        self.world.offers[offer.instance_id] = offer
        return offer

    def cancel_offer(self, company_id: int, offer_id: int) -> bool:
        """Remove the listing. Routes already accepted from it keep running until cancelled."""
        offer = self.world.offers.get(offer_id)
        if offer is None or offer.seller_company_id != company_id:
            return False
        del self.world.offers[offer_id]
        return True

    def update_offer(self, company_id: int, offer_id: int,
                     price: Optional[float] = None, amount: Optional[float] = None) -> bool:
        offer = self.world.offers.get(offer_id)
        if offer is None or offer.seller_company_id != company_id:
            return False
        if price is not None and price < 0:
            return False
        committed = self.committed(offer_id)
        if amount is not None:
            if amount <= 0 and committed == 0:
                del self.world.offers[offer_id]
                return True
            if amount < committed:
                return False
        if price is not None:
            offer.price_per_unit = price
        if amount is not None:
            offer.amount_in_stock += amount - offer.amount_available
            offer.amount_available = amount
        return True

    def list_offers(self, resource: Optional[str] = None) -> List[G._SellOffer]:
        offers = [o for o in self.world.offers.values() if o.amount_in_stock > 0]
        if resource is not None:
            offers = [o for o in offers if o.resource == resource]
        return sorted(offers, key=lambda o: (o.resource, o.price_per_unit, o.instance_id))

    def refresh_offers(self) -> None:
        """Track each listing's backing facility net flow, never dropping below what is committed."""
        for offer in self.world.offers.values():
            facility = self.world.facilities.get(offer.seller_facility_id)
            if facility is None:
                continue
            committed = self.committed(offer.instance_id)
            net = F.net_flow(facility, self.catalog).get(offer.resource, 0.0)
            offer.amount_available = max(committed, offer.amount_available + net)
            offer.amount_in_stock = offer.amount_available - committed

    # ── external routes ────────────────────────────────────────────────────
    def accept_offer(self, buyer_company_id: int, buyer_facility_id: int,
                     offer_id: int, amount: float) -> Optional[G._TradeRoute]:
        offer = self.world.offers.get(offer_id)
        if offer is None or amount <= 0 or offer.amount_in_stock < amount:
            return None
        if buyer_company_id == offer.seller_company_id:
            return None
        if offer.seller_facility_id not in self.world.facilities:
            return None
        if self._owned_stock_facility(buyer_company_id, buyer_facility_id) is None:
            return None

        route = G._TradeRoute(
            seller_company_id=offer.seller_company_id,
            seller_facility_id=offer.seller_facility_id,
            buyer_company_id=buyer_company_id,
            buyer_facility_id=buyer_facility_id,
            resource=offer.resource,
            amount_per_tick=amount,
            price_per_unit=offer.price_per_unit,
            total_price=amount * offer.price_per_unit,
            creation_order=self.world.next_route_order(),
            offer_id=offer.instance_id,
        )
        offer.amount_in_stock -= amount
        self.world.routes[route.instance_id] = route
        self._link(route)
        return route

    def _party_route(self, company_id: int, route_id: int, internal: bool) -> Optional[G._TradeRoute]:
        route = self.world.routes.get(route_id)
        if route is None or route.is_internal != internal:
            return None
        if company_id not in (route.seller_company_id, route.buyer_company_id):
            return None
        return route

    def cancel_route(self, company_id: int, route_id: int) -> bool:
        route = self._party_route(company_id, route_id, internal=False)
        if route is None:
            return False
        offer = self.world.offers.get(route.offer_id) if route.offer_id is not None else None
        if offer is not None:
            offer.amount_in_stock += route.amount_per_tick
        del self.world.routes[route_id]
        self._unlink(route)
        return True

    def update_route(self, company_id: int, route_id: int,
                     amount: Optional[float] = None, price: Optional[float] = None) -> bool:
        route = self._party_route(company_id, route_id, internal=False)
        if route is None:
            return False
        if price is not None and price < 0:
            return False
        offer = None
        if amount is not None:
            if amount <= 0:
                return False
            offer = self.world.offers.get(route.offer_id) if route.offer_id is not None else None
            if offer is None:
                return False
            diff = amount - route.amount_per_tick
            if diff > 0 and offer.amount_in_stock < diff:
                return False
            offer.amount_in_stock -= diff
            route.amount_per_tick = amount
        if price is not None:
            route.price_per_unit = price
        route.total_price = route.amount_per_tick * route.price_per_unit
        self._link(route)
        return True

    # ── internal transfers ─────────────────────────────────────────────────
    def create_internal_transfer(self, company_id: int, from_facility_id: int, to_facility_id: int,
                                 resource: str, amount: float) -> Optional[G._TradeRoute]:
        if from_facility_id == to_facility_id or amount <= 0 or resource not in self.catalog.resources:
            return None
        source = self._owned_stock_facility(company_id, from_facility_id)
        target = self._owned_stock_facility(company_id, to_facility_id)
        if source is None or target is None:
            return None
        if G.FacilityCategory.storage not in (source.category, target.category):
            logger.debug("Internal transfer needs a storage endpoint (%s -> %s)", source.name, target.name)
            return None
        route = G._TradeRoute(
            seller_company_id=company_id,
            seller_facility_id=from_facility_id,
            buyer_company_id=company_id,
            buyer_facility_id=to_facility_id,
            resource=resource,
            amount_per_tick=amount,
            creation_order=self.world.next_route_order(),
            is_internal=True,
        )
        self.world.routes[route.instance_id] = route
        self._link(route)
        return route

    def cancel_internal_transfer(self, company_id: int, route_id: int) -> bool:
        route = self._party_route(company_id, route_id, internal=True)
        if route is None:
            return False
        del self.world.routes[route_id]
        self._unlink(route)
        return True

    def update_internal_transfer(self, company_id: int, route_id: int, amount: float) -> bool:
        route = self._party_route(company_id, route_id, internal=True)
        if route is None or amount <= 0:
            return False
        route.amount_per_tick = amount
        self._link(route)
        return True

    def transfer_resource(self, company_id: int, from_facility_id: int, to_facility_id: int,
                          resource: str, amount: float) -> bool:
        """One-shot move between two facilities of the same company."""
        if from_facility_id == to_facility_id or amount <= 0:
            return False
        source = self._owned_stock_facility(company_id, from_facility_id)
        target = self._owned_stock_facility(company_id, to_facility_id)
        if source is None or target is None:
            return False
        if not source.remove_resource(resource, amount):
            return False
        target.add_resource(resource, amount)
        return True

    # ── settlement ─────────────────────────────────────────────────────────
    def routes_in_order(self) -> List[G._TradeRoute]:
        return sorted(self.world.routes.values(), key=lambda r: r.creation_order)

    def _fail(self, route: G._TradeRoute, tick: int, reason: str) -> None:
        route.last_failed_tick = tick
        logger.debug("Route %s (%s x%g) failed at tick %d: %s",
                     route.instance_id, route.resource, route.amount_per_tick, tick, reason)

    def settle(self, tick: int) -> SettlementSummary:
        """Run every route once, oldest first. Nothing partial is ever applied."""
        summary = SettlementSummary(tick=tick)
        for route in self.routes_in_order():
            seller = self.world.facilities.get(route.seller_facility_id)
            buyer = self.world.facilities.get(route.buyer_facility_id)
            if seller is None or buyer is None:
                self._fail(route, tick, "facility missing")
                summary.failed += 1
                continue
            if seller.get_resource(route.resource) < route.amount_per_tick:
                self._fail(route, tick, "insufficient stock")
                summary.failed += 1
                continue

            if not route.is_internal:
                seller_co = self.world.companies.get(route.seller_company_id)
                buyer_co = self.world.companies.get(route.buyer_company_id)
                if seller_co is None or buyer_co is None:
                    self._fail(route, tick, "company missing")
                    summary.failed += 1
                    continue
                if buyer_co.balance < route.total_price:
                    self._fail(route, tick, "insufficient funds")
                    summary.failed += 1
                    continue
                buyer_co.balance -= route.total_price
                seller_co.balance += route.total_price
                summary.money_moved += route.total_price

            seller.remove_resource(route.resource, route.amount_per_tick)
            buyer.add_resource(route.resource, route.amount_per_tick)
            route.last_failed_tick = None
            summary.settled += 1
        return summary

    def routes_of(self, company_id: int) -> Dict[str, List[G._TradeRoute]]:
        buying, selling, internal = [], [], []
        for route in self.routes_in_order():
            if route.is_internal:
                if route.seller_company_id == company_id:
                    internal.append(route)
            elif route.buyer_company_id == company_id:
                buying.append(route)
            elif route.seller_company_id == company_id:
                selling.append(route)
        return {"buying": buying, "selling": selling, "internal": internal}
