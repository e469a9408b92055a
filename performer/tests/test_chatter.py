"""Tests for stall commentary and autonomous chatter."""
import time

import pytest

from core.chatter import AUTOTALK_PROMPT, OPENING_STALL_LINES, stall_context
from core.state import PendingSong


def make_idle(state):
    long_ago = time.monotonic() - 1000
    state.last_chat_activity_at = long_ago
    state.last_spoke_at = long_ago


class TestStallContext:
    def test_buckets(self):
        assert "excited" in stall_context("Song", 5)
        assert "Reassure" in stall_context("Song", 45)
        assert "frustrated" in stall_context("Song", 90)
        assert '"Song"' in stall_context("Song", 0)


class TestStallCommentator:
    @pytest.mark.asyncio
    async def test_comment_speaks_and_reschedules(self, performer):
        performer.state.begin_song("Waiting Song")

        await performer.stall.comment("Waiting Song")

        assert len(performer.provider.calls) == 1
        assert "Waiting Song" in performer.provider.prompts[0]
        assert performer.state.stall_timer is not None

    @pytest.mark.asyncio
    async def test_comment_skipped_while_speaking_but_chain_continues(self, performer):
        performer.state.begin_song("Waiting Song")
        performer.state.speaking = True

        await performer.stall.comment("Waiting Song")

        assert performer.provider.calls == []
        assert performer.state.stall_timer is not None

    @pytest.mark.asyncio
    async def test_chain_stops_when_song_resolves(self, performer):
        await performer.stall.comment("Gone Song")
        assert performer.provider.calls == []
        assert performer.state.stall_timer is None

    @pytest.mark.asyncio
    async def test_chain_stops_for_parked_song(self, performer):
        performer.state.begin_song("Song")
        performer.state.speaking = True
        performer.state.park_or_claim(PendingSong(result=None, title="Song", username="u"))
        performer.state.speaking = False
        await performer.stall.comment("Song")
        assert performer.provider.calls == []

    @pytest.mark.asyncio
    async def test_opening_line_then_first_delay(self, performer):
        performer.state.begin_song("Fresh Song")

        await performer.stall._open("Fresh Song")

        prompt = performer.provider.prompts[0]
        assert any(line.format(title="Fresh Song") in prompt for line in OPENING_STALL_LINES)
        assert performer.state.stall_timer is not None

    @pytest.mark.asyncio
    async def test_reset_cancels_pending_timer(self, performer):
        performer.state.begin_song("Song")
        performer.stall.schedule("Song", 30)
        timer = performer.state.stall_timer
        performer.state.reset_song()
        assert timer.cancelled()
        assert performer.state.stall_timer is None


class TestAutoTalker:
    @pytest.mark.asyncio
    async def test_idle_tick_speaks_about_a_topic(self, performer):
        make_idle(performer.state)

        assert await performer.autotalk.tick()

        topics = performer.config_manager.config.autotalk.topics
        prompt = performer.provider.prompts[0]
        assert any(AUTOTALK_PROMPT.format(topic=t) in prompt for t in topics)

    @pytest.mark.asyncio
    async def test_disabled_tick_is_silent(self, performer):
        make_idle(performer.state)
        performer.autotalk.set_enabled(False)
        assert not await performer.autotalk.tick()
        assert performer.provider.calls == []

    @pytest.mark.asyncio
    async def test_recent_chat_defers_autotalk(self, performer):
        make_idle(performer.state)
        performer.state.last_chat_activity_at = time.monotonic()
        assert not await performer.autotalk.tick()

    @pytest.mark.asyncio
    async def test_quiet_after_own_speech(self, performer):
        make_idle(performer.state)
        performer.state.last_spoke_at = time.monotonic()
        assert not await performer.autotalk.tick()

    @pytest.mark.asyncio
    async def test_singing_blocks_autotalk(self, performer):
        make_idle(performer.state)
        performer.state.singing = True
        assert not await performer.autotalk.tick()

    @pytest.mark.asyncio
    async def test_processing_song_turns_tick_into_stall_line(self, performer):
        make_idle(performer.state)
        performer.state.begin_song("Slow Song")
        performer.state.song_started_at = time.monotonic() - 45

        assert await performer.autotalk.tick()

        prompt = performer.provider.prompts[0]
        assert "Slow Song" in prompt
        assert "Reassure" in prompt

    @pytest.mark.asyncio
    async def test_next_delay_stays_within_variance(self, performer):
        for _ in range(50):
            delay = performer.autotalk.next_delay()
            assert 3.0 <= delay <= 7.0
