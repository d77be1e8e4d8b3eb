"""
Record store tests.

Run with: pytest tests/test_store.py -v
"""

from conftest import RESTAURANT_PHONE
import models


class TestResolveRestaurant:
    def test_exact_phone_match_with_menu(self, store):
        ctx = store.resolve_restaurant(RESTAURANT_PHONE)

        assert ctx.name == "Luigi's Trattoria"
        assert ctx.voice == "verse"
        assert [m.name for m in ctx.menu] == ["Margherita Pizza", "Caesar Salad", "Tiramisu"]
        assert ctx.menu[0].modifications == ("extra cheese", "gluten free crust")

    def test_falls_back_to_any_active_restaurant(self, store):
        ctx = store.resolve_restaurant("+19999999999")
        assert ctx is not None
        assert ctx.name == "Luigi's Trattoria"

    def test_missing_phone_uses_fallback(self, store):
        assert store.resolve_restaurant("").name == "Luigi's Trattoria"

    def test_nothing_to_resolve(self, empty_store):
        assert empty_store.resolve_restaurant(RESTAURANT_PHONE) is None

    def test_inactive_restaurants_are_skipped(self, session_factory, empty_store):
        db = session_factory()
        try:
            db.add(models.Restaurant(name="Closed Diner", phone=RESTAURANT_PHONE, active=False))
            db.commit()
        finally:
            db.close()
        assert empty_store.resolve_restaurant(RESTAURANT_PHONE) is None

    def test_default_greeting(self, session_factory, empty_store):
        db = session_factory()
        try:
            db.add(models.Restaurant(name="Blue Fin", phone="+1", active=True))
            db.commit()
        finally:
            db.close()
        assert empty_store.resolve_restaurant("+1").greeting == "Welcome to Blue Fin! How can I help you today?"


class TestMenuQueries:
    def test_find_menu_item_is_case_insensitive(self, store):
        ctx = store.resolve_restaurant(RESTAURANT_PHONE)
        assert store.find_menu_item(ctx.id, "TIRAMI").name == "Tiramisu"

    def test_find_menu_item_escapes_wildcards(self, store):
        ctx = store.resolve_restaurant(RESTAURANT_PHONE)
        assert store.find_menu_item(ctx.id, "%") is None

    def test_list_scoped_to_restaurant(self, store, session_factory):
        db = session_factory()
        try:
            other = models.Restaurant(name="Other", phone="+2", active=True)
            db.add(other)
            db.commit()
            db.add(models.MenuItem(restaurant_id=other.id, name="Tiramisu Deluxe", price=9, available=True))
            db.commit()
        finally:
            db.close()
        ctx = store.resolve_restaurant(RESTAURANT_PHONE)
        assert [m.name for m in store.list_menu_items(ctx.id, search="tiramisu")] == ["Tiramisu"]


class TestCallLogs:
    def test_get_or_create_reuses_existing(self, store):
        ctx = store.resolve_restaurant(RESTAURANT_PHONE)
        existing = store.create_call_log("CA1", None, "Unknown", "+1555", RESTAURANT_PHONE)

        assert store.get_or_create_call_log("CA1", ctx, "+1555", RESTAURANT_PHONE) == existing
        assert store.get_or_create_call_log("CA2", ctx, "+1555", RESTAURANT_PHONE) != existing

    def test_update_call_log(self, store, session_factory):
        log_id = store.create_call_log("CA1", 1, "Luigi's Trattoria", "+1555", RESTAURANT_PHONE)

        assert store.update_call_log(log_id, status="completed", duration=42)
        assert not store.update_call_log(9999, status="completed")

        db = session_factory()
        try:
            row = db.get(models.CallLog, log_id)
            assert row.status == "completed"
            assert row.duration == 42
        finally:
            db.close()

    def test_find_call_log_without_sid(self, store):
        assert store.find_call_log_id("") is None

    def test_add_transcript(self, store, session_factory):
        log_id = store.create_call_log("CA1", 1, "Luigi's Trattoria", "+1555", RESTAURANT_PHONE)
        store.add_transcript(log_id, "caller", "One margherita please")

        db = session_factory()
        try:
            row = db.query(models.Transcript).one()
            assert (row.call_log_id, row.role, row.text) == (log_id, "caller", "One margherita please")
        finally:
            db.close()
