"""
Tests for the per-chat reply governor.
"""
import random

import pytest

from ppid_bot.domain.services.rate_limiter import RateGovernor
from tests.conftest import CHAT


@pytest.fixture
def governor(clock) -> RateGovernor:
    return RateGovernor(
        cooldown_seconds=2.0,
        min_delay_ms=1000,
        max_delay_ms=3000,
        per_char_ms=30,
        typing_cap_ms=3000,
        clock=clock,
        rng=random.Random(7),
    )


class TestCooldown:

    @pytest.mark.unit
    def test_first_message_allowed(self, governor):
        assert governor.try_acquire(CHAT) is True

    @pytest.mark.unit
    def test_second_message_within_cooldown_refused(self, governor, clock):
        governor.try_acquire(CHAT)
        clock.advance(1.5)

        assert governor.try_acquire(CHAT) is False
        assert governor.remaining(CHAT) == pytest.approx(0.5)

    @pytest.mark.unit
    def test_refusal_does_not_extend_cooldown(self, governor, clock):
        """Only answered messages are recorded"""
        governor.try_acquire(CHAT)
        clock.advance(1.5)
        governor.try_acquire(CHAT)
        clock.advance(0.5)

        assert governor.try_acquire(CHAT) is True

    @pytest.mark.unit
    def test_chats_are_independent(self, governor):
        governor.try_acquire(CHAT)
        assert governor.try_acquire("6289999999999@s.whatsapp.net") is True

    @pytest.mark.unit
    def test_cleanup_forgets_idle_chats(self, governor, clock):
        governor.try_acquire(CHAT)
        clock.advance(601)

        assert governor.cleanup(max_age_seconds=600) == 1
        assert governor.remaining(CHAT) == 0.0


class TestPacing:

    @pytest.mark.unit
    def test_human_delay_in_range(self, governor):
        for _ in range(50):
            assert 1.0 <= governor.human_delay() <= 3.0

    @pytest.mark.unit
    def test_typing_delay_proportional_and_capped(self, governor):
        assert governor.typing_delay("a" * 10) == pytest.approx(0.3)
        assert governor.typing_delay("a" * 1000) == pytest.approx(3.0)
