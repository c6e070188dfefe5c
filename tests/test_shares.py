"""Public share links: issue, resolve, expire, protect and revoke."""

from __future__ import annotations

from datetime import timedelta

import pytest

from optihub.models.share_link import ShareLink
from optihub.pipeline import (
    ShareAuthError,
    ShareExpiredError,
    ShareNotFound,
    Stage,
    StageNotReady,
)
from optihub.services.shares import ShareService


@pytest.fixture
def shares(env, fixed_clock):
    return ShareService(
        env.session_factory,
        public_base_url="https://app.example/shared/",
        clock=fixed_clock,
    )


@pytest.fixture
def analysed(env):
    recording = env.create_recording()
    env.complete_stages(recording.id)
    return recording


def test_create_and_resolve_share(env, shares, analysed):
    created = env.run(shares.create_share(analysed.id, created_by="staff@example.com"))

    assert created.url == f"https://app.example/shared/{created.slug}"
    assert created.expires_at is None

    shared = env.run(shares.resolve_share(created.slug))
    assert shared.recording_id == analysed.id
    assert shared.extract_text.startswith("extract of:")
    assert shared.summary.startswith("Paused the weakest ad set")
    assert shared.view_count == 1

    again = env.run(shares.resolve_share(created.slug))
    assert again.view_count == 2


def test_share_requires_completed_analysis(env, shares):
    recording = env.create_recording()
    env.complete_stages(recording.id, Stage.TRANSCRIBE, Stage.PROCESS)

    with pytest.raises(StageNotReady):
        env.run(shares.create_share(recording.id))


def test_expired_link_is_rejected(env, shares, analysed, fixed_clock):
    created = env.run(shares.create_share(analysed.id, expires_in_days=7))

    fixed_clock.now = fixed_clock.now + timedelta(days=6)
    assert env.run(shares.resolve_share(created.slug)).view_count == 1

    fixed_clock.now = fixed_clock.now + timedelta(days=2)
    with pytest.raises(ShareExpiredError):
        env.run(shares.resolve_share(created.slug))

    [link] = env.fetch(ShareLink, slug=created.slug)
    assert link.view_count == 1


def test_password_protected_link(env, shares, analysed):
    created = env.run(shares.create_share(analysed.id, password="s3cret-pass"))

    with pytest.raises(ShareAuthError):
        env.run(shares.resolve_share(created.slug))
    with pytest.raises(ShareAuthError):
        env.run(shares.resolve_share(created.slug, password="wrong-pass"))

    shared = env.run(shares.resolve_share(created.slug, password="s3cret-pass"))
    assert shared.slug == created.slug


def test_revoked_link_is_not_found(env, shares, analysed):
    created = env.run(shares.create_share(analysed.id))

    env.run(shares.revoke_share(created.slug))

    with pytest.raises(ShareNotFound):
        env.run(shares.resolve_share(created.slug))
    with pytest.raises(ShareNotFound):
        env.run(shares.revoke_share(created.slug))


def test_unknown_slug(env, shares):
    with pytest.raises(ShareNotFound):
        env.run(shares.resolve_share("does-not-exist"))


def test_non_positive_expiry_is_rejected(env, shares, analysed):
    with pytest.raises(ValueError):
        env.run(shares.create_share(analysed.id, expires_in_days=0))


def test_slugs_are_unique(env, shares, analysed):
    slugs = {env.run(shares.create_share(analysed.id)).slug for _ in range(5)}

    assert len(slugs) == 5
