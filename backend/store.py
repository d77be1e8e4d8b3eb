import json
import logging
from datetime import datetime

from sqlalchemy import func, or_

from database import SessionLocal
from session import MenuEntry, RestaurantContext
import models

logger = logging.getLogger("ivr.store")


def _menu_entry(row: models.MenuItem) -> MenuEntry:
    mods = ()
    if row.modifications:
        try:
            parsed = json.loads(row.modifications)
            if isinstance(parsed, list):
                mods = tuple(str(m) for m in parsed)
        except ValueError:
            logger.warning("[STORE] Bad modifications JSON on menu item %s", row.id)
    return MenuEntry(
        id=row.id,
        name=row.name,
        price=float(row.price or 0),
        description=row.description or "",
        category=row.category or "",
        modifications=mods,
    )


def _contains(column, needle: str):
    return func.lower(column).contains(needle.strip().lower(), autoescape=True)


class RecordStore:
    """Each method opens and closes its own session, so any of them can run under asyncio.to_thread."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    # ── Restaurants ────────────────────────────────────────────────────────────
    def resolve_restaurant(self, phone: str | None) -> RestaurantContext | None:
        """Active restaurant for ``phone``, else any active restaurant, with its available menu."""
        db = self._session_factory()
        try:
            q = db.query(models.Restaurant).filter(models.Restaurant.active.is_(True))
            r = q.filter(models.Restaurant.phone == phone).first() if phone else None
            if r is None:
                r = q.order_by(models.Restaurant.id).first()
                if r is not None:
                    logger.info("[STORE] No restaurant for %s, falling back to #%s", phone or "n/a", r.id)
            if r is None:
                return None
            items = (
                db.query(models.MenuItem)
                .filter_by(restaurant_id=r.id, available=True)
                .order_by(models.MenuItem.id)
                .all()
            )
            return RestaurantContext(
                id=r.id,
                name=r.name or f"#{r.id}",
                cuisine=r.cuisine or "",
                system_prompt=r.system_prompt or "",
                greeting_message=r.greeting_message or "",
                voice=r.voice or "",
                menu=tuple(_menu_entry(i) for i in items),
            )
        finally:
            db.close()

    # ── Menu ───────────────────────────────────────────────────────────────────
    def find_menu_item(self, restaurant_id: int, name: str) -> MenuEntry | None:
        db = self._session_factory()
        try:
            row = (
                db.query(models.MenuItem)
                .filter_by(restaurant_id=restaurant_id, available=True)
                .filter(_contains(models.MenuItem.name, name))
                .order_by(models.MenuItem.id)
                .first()
            )
            return _menu_entry(row) if row else None
        finally:
            db.close()

    def list_menu_items(self, restaurant_id: int, category: str | None = None,
                        search: str | None = None) -> list[MenuEntry]:
        db = self._session_factory()
        try:
            q = db.query(models.MenuItem).filter_by(restaurant_id=restaurant_id, available=True)
            if category:
                q = q.filter(_contains(models.MenuItem.category, category))
            if search:
                q = q.filter(or_(
                    _contains(models.MenuItem.name, search),
                    _contains(models.MenuItem.description, search),
                ))
            return [_menu_entry(i) for i in q.order_by(models.MenuItem.id).all()]
        finally:
            db.close()

    # ── Call logs ──────────────────────────────────────────────────────────────
    def create_call_log(self, call_sid: str, restaurant_id: int | None, restaurant_name: str,
                        caller: str, called: str, status: str = "in-progress") -> int:
        db = self._session_factory()
        try:
            row = models.CallLog(
                call_sid=call_sid,
                restaurant_id=restaurant_id,
                restaurant=restaurant_name,
                caller=caller,
                called=called,
                status=status,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        finally:
            db.close()

    def find_call_log_id(self, call_sid: str) -> int | None:
        if not call_sid:
            return None
        db = self._session_factory()
        try:
            row = (
                db.query(models.CallLog.id)
                .filter_by(call_sid=call_sid)
                .order_by(models.CallLog.id.desc())
                .first()
            )
            return row[0] if row else None
        finally:
            db.close()

    def get_or_create_call_log(self, call_sid: str, restaurant: RestaurantContext,
                               caller: str, called: str) -> int:
        existing = self.find_call_log_id(call_sid)
        if existing is not None:
            self.update_call_log(existing, restaurant_id=restaurant.id, restaurant=restaurant.name)
            return existing
        return self.create_call_log(call_sid, restaurant.id, restaurant.name, caller, called)

    def update_call_log(self, call_log_id: int, **fields) -> bool:
        db = self._session_factory()
        try:
            row = db.get(models.CallLog, call_log_id)
            if not row:
                return False
            for key, value in fields.items():
                setattr(row, key, value)
            db.commit()
            return True
        finally:
            db.close()

    # ── Inserts ────────────────────────────────────────────────────────────────
    def add_transcript(self, call_log_id: int, role: str, text: str) -> None:
        db = self._session_factory()
        try:
            db.add(models.Transcript(
                call_log_id=call_log_id,
                role=role,
                text=text,
                timestamp=datetime.utcnow(),
            ))
            db.commit()
        finally:
            db.close()

    def add_order(self, call_log_id: int | None, restaurant_id: int | None, items: list[dict],
                  total: float, delivery_address: str | None) -> int:
        db = self._session_factory()
        try:
            row = models.Order(
                call_log_id=call_log_id,
                restaurant_id=restaurant_id,
                items=json.dumps(items),
                total=total,
                delivery_address=delivery_address,
                status="confirmed",
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        finally:
            db.close()

    def add_reservation(self, call_log_id: int | None, restaurant_id: int | None, guest_name: str,
                        date: str, time: str, guest_count: int,
                        special_requests: str | None) -> int:
        db = self._session_factory()
        try:
            row = models.Reservation(
                call_log_id=call_log_id,
                restaurant_id=restaurant_id,
                guest_name=guest_name,
                date=date,
                time=time,
                guest_count=guest_count,
                special_requests=special_requests,
                status="confirmed",
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        finally:
            db.close()
