"""Entitlement resolver: rule order, purity and error mapping."""

import pytest

from magicpaws.core.errors import NotFoundError, PermissionError, UnauthenticatedError
from magicpaws.core.metrics import access_decisions_total
from magicpaws.features.entitlements.service import (
    AccessReason,
    LessonRef,
    check_lesson_access,
    load_lesson_ref,
    require_access,
    resolve_access,
)
from magicpaws.models.principal import Principal, Role

CLIENT = Principal(id="u1", email="client@example.com")
ADMIN = Principal(id="u2", email="owner@example.com", role=Role.ADMIN)

PAID = LessonRef(id="l1", tier_id="t1")
PREVIEW = LessonRef(id="l2", tier_id="t1", is_free_preview=True)
ORPHAN = LessonRef(id="l3", tier_id=None)


def owns_nothing(user_id, tier_id):
    return False


def owns_everything(user_id, tier_id):
    return True


class RecordingLookup:
    def __init__(self, owned=False):
        self.owned = owned
        self.calls = []

    def __call__(self, user_id, tier_id):
        self.calls.append((user_id, tier_id))
        return self.owned


def test_anonymous_is_denied_even_for_free_preview():
    decision = resolve_access(None, PREVIEW, owns_everything)
    assert decision.granted is False
    assert decision.reason == AccessReason.UNAUTHENTICATED


def test_admin_is_granted_without_purchase_lookup():
    lookup = RecordingLookup(owned=False)
    decision = resolve_access(ADMIN, PAID, lookup)
    assert decision.granted is True
    assert decision.reason == AccessReason.ADMIN
    assert lookup.calls == []


def test_free_preview_granted_to_any_signed_in_user():
    lookup = RecordingLookup(owned=False)
    decision = resolve_access(CLIENT, PREVIEW, lookup)
    assert decision.granted is True
    assert decision.reason == AccessReason.FREE_PREVIEW
    assert lookup.calls == []


def test_purchase_grants_access():
    lookup = RecordingLookup(owned=True)
    decision = resolve_access(CLIENT, PAID, lookup)
    assert decision.granted is True
    assert decision.reason == AccessReason.PURCHASED
    assert lookup.calls == [("u1", "t1")]


def test_no_purchase_is_denied():
    decision = resolve_access(CLIENT, PAID, owns_nothing)
    assert decision.granted is False
    assert decision.reason == AccessReason.NOT_PURCHASED


def test_missing_tier_raises_not_found():
    with pytest.raises(NotFoundError):
        resolve_access(CLIENT, ORPHAN, owns_nothing)


def test_missing_tier_does_not_matter_for_admin_or_preview():
    assert resolve_access(ADMIN, ORPHAN, owns_nothing).granted
    orphan_preview = LessonRef(id="l4", tier_id=None, is_free_preview=True)
    assert resolve_access(CLIENT, orphan_preview, owns_nothing).granted


def test_resolution_is_repeatable():
    first = resolve_access(CLIENT, PAID, owns_everything)
    second = resolve_access(CLIENT, PAID, owns_everything)
    assert first == second


def test_require_access_maps_denials_to_errors():
    with pytest.raises(UnauthenticatedError):
        require_access(None, PAID, owns_nothing)
    with pytest.raises(PermissionError) as exc:
        require_access(CLIENT, PAID, owns_nothing)
    assert exc.value.code == "not_purchased"
    assert exc.value.status_code == 403


def test_check_lesson_access_counts_decisions():
    check_lesson_access(CLIENT, PAID, owns_nothing)
    check_lesson_access(ADMIN, PAID, owns_nothing)
    assert access_decisions_total.value({"outcome": "deny", "reason": "not_purchased"}) == 1
    assert access_decisions_total.value({"outcome": "grant", "reason": "admin"}) == 1


def test_database_lookup_sees_purchases(alice, catalog, grant_purchase):
    lesson = load_lesson_ref(catalog["paid"]["id"])
    assert lesson.tier_id == catalog["tier"]["id"]
    assert resolve_access(alice, lesson).reason == AccessReason.NOT_PURCHASED

    grant_purchase(alice.id, catalog["tier"]["id"])
    assert resolve_access(alice, lesson).reason == AccessReason.PURCHASED


def test_load_lesson_ref_unknown_lesson():
    with pytest.raises(NotFoundError):
        load_lesson_ref("missing")
