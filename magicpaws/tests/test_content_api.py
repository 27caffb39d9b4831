"""Catalog listing, tier trees and lesson detail with per-caller access."""

from decimal import Decimal

import pytest

from magicpaws.core.errors import NotFoundError
from magicpaws.features.content.service import create_tier, get_lesson, get_tier_tree, list_tiers, update_tier
from magicpaws.features.progress.service import record_progress


def _lessons(tree):
    return {lesson.title: lesson for module in tree.modules for lesson in module.lessons}


def test_list_tiers_counts_published_content(catalog):
    tiers = list_tiers(None)
    assert len(tiers) == 1
    tier = tiers[0]
    assert tier.slug == "puppy-basics"
    assert tier.module_count == 1
    assert tier.lesson_count == 2
    assert tier.total_duration == 420
    assert tier.is_purchased is False


def test_inactive_tiers_are_hidden(catalog, alice, admin):
    create_tier("Retired", Decimal("10.00"), is_active=False)
    assert [t.slug for t in list_tiers(alice)] == ["puppy-basics"]
    with pytest.raises(NotFoundError):
        get_tier_tree("retired", alice)
    assert get_tier_tree("retired", admin).slug == "retired"


def test_owners_keep_the_tree_of_a_retired_tier(catalog, alice, bob, grant_purchase):
    grant_purchase(alice.id, catalog["tier"]["id"])
    update_tier("puppy-basics", {"is_active": False})

    tree = get_tier_tree("puppy-basics", alice)
    assert tree.is_purchased is True
    assert _lessons(tree)["Sit and Stay"].has_access is True
    assert get_lesson(catalog["paid"]["id"], alice).has_access is True
    with pytest.raises(NotFoundError):
        get_tier_tree("puppy-basics", bob)
    with pytest.raises(NotFoundError):
        get_tier_tree("puppy-basics", None)


def test_anonymous_tree_withholds_everything(catalog):
    lessons = _lessons(get_tier_tree("puppy-basics", None))

    assert set(lessons) == {"Welcome", "Sit and Stay"}
    for lesson in lessons.values():
        assert lesson.has_access is False
        assert lesson.access_reason == "unauthenticated"
        assert lesson.youtube_video_id is None


def test_client_tree_grants_free_preview_only(catalog, alice):
    lessons = _lessons(get_tier_tree("puppy-basics", alice))

    assert lessons["Welcome"].has_access is True
    assert lessons["Welcome"].access_reason == "free_preview"
    assert lessons["Welcome"].youtube_video_id == "vid_welcome"
    assert lessons["Sit and Stay"].has_access is False
    assert lessons["Sit and Stay"].access_reason == "not_purchased"
    assert lessons["Sit and Stay"].youtube_video_id is None


def test_purchased_tree_includes_progress(catalog, alice, grant_purchase):
    grant_purchase(alice.id, catalog["tier"]["id"])
    record_progress(alice, catalog["paid"]["id"], last_position=120)

    tree = get_tier_tree("puppy-basics", alice)
    lessons = _lessons(tree)
    assert tree.is_purchased is True
    assert lessons["Sit and Stay"].access_reason == "purchased"
    assert lessons["Sit and Stay"].progress.last_position == 120


def test_admin_tree(catalog, admin):
    lessons = _lessons(get_tier_tree("puppy-basics", admin))
    assert all(lesson.access_reason == "admin" for lesson in lessons.values())


def test_lesson_teaser_when_denied(catalog, alice):
    lesson = get_lesson(catalog["paid"]["id"], alice)
    assert lesson.has_access is False
    assert lesson.content is None
    assert lesson.youtube_video_id is None
    assert lesson.next_lesson is None
    assert lesson.tier_slug == "puppy-basics"


def test_lesson_detail_when_granted(catalog, alice, grant_purchase):
    grant_purchase(alice.id, catalog["tier"]["id"])
    lesson = get_lesson(catalog["paid"]["id"], alice)

    assert lesson.has_access is True
    assert lesson.content == "Step one..."
    assert lesson.youtube_video_id == "vid_sit"
    assert lesson.previous_lesson.title == "Welcome"
    assert lesson.next_lesson is None


def test_unpublished_lesson(catalog, alice, admin):
    with pytest.raises(NotFoundError):
        get_lesson(catalog["hidden"]["id"], alice)
    assert get_lesson(catalog["hidden"]["id"], admin).title == "Draft Lesson"


def test_deactivated_tier_blocks_checkout_lookup(catalog):
    update_tier("puppy-basics", {"is_active": False})
    assert list_tiers(None) == []


def test_tiers_endpoint(client, catalog):
    resp = client.get("/api/content/tiers")
    assert resp.status_code == 200
    body = resp.json()
    assert body[0]["slug"] == "puppy-basics"
    assert Decimal(str(body[0]["price"])) == Decimal("49.00")


def test_tier_tree_endpoint(client, auth_headers, catalog):
    resp = client.get("/api/content/tiers/puppy-basics", headers=auth_headers())
    assert resp.status_code == 200
    lessons = resp.json()["modules"][0]["lessons"]
    assert [lesson["has_access"] for lesson in lessons] == [True, False]

    assert client.get("/api/content/tiers/nope").status_code == 404


def test_lesson_endpoint(client, auth_headers, catalog):
    resp = client.get(f"/api/content/lessons/{catalog['paid']['id']}", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["has_access"] is False
    assert resp.json()["content"] is None


def test_invalid_token_is_rejected_not_anonymous(client, catalog):
    resp = client.get("/api/content/tiers", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
