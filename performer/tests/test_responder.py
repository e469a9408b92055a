"""Tests for reply generation and the speaking slot."""
import asyncio

import pytest

from core.errors import StreamError
from core.responder import AUDIO_ERROR_NOTE, ERROR_LINE
from core.state import ChatRequest, RequestKind
from conftest import settle, wait_for


class TestRespond:
    @pytest.mark.asyncio
    async def test_reply_is_displayed_stored_and_spoken(self, performer):
        performer.provider.replies = ["Hey alice, welcome in!"]

        reply = await performer.responder.respond("hello", "alice")

        assert reply == "Hey alice, welcome in!"
        assert performer.voice.spoken == ["Hey alice, welcome in!"]
        assert performer.events.current_subtitle == "Hey alice, welcome in!"
        assert not performer.state.speaking
        window = performer.state.conversation_window
        assert window[-2] == {"role": "user", "content": "alice says: hello"}
        assert window[-1] == {"role": "assistant", "content": "Hey alice, welcome in!"}
        assert [r["type"] for r in performer.store.records] == ["user", "assistant"]
        assert performer.store.records[1]["inResponseTo"] == "alice"

    @pytest.mark.asyncio
    async def test_subtitle_grows_while_streaming(self, performer):
        performer.provider.replies = ["abcdef"]
        await performer.responder.respond("hi", "bob")
        subtitles = performer.events.named("subtitle-update")
        assert "Thinking..." in subtitles
        assert "abc" in subtitles
        assert performer.events.named("reset-audio") == [None]

    @pytest.mark.asyncio
    async def test_directives_are_stripped_and_sounds_played(self, performer):
        performer.provider.replies = ['Boom goes the chat @sound("vineboom", "2") right?']

        reply = await performer.responder.respond("do the sound", "carol")

        assert reply == "Boom goes the chat right?"
        assert performer.voice.spoken == ["Boom goes the chat right?"]
        assert len(performer.events.named("play-sound-effect")) == 2
        assert "@sound" not in performer.store.records[-1]["content"]

    @pytest.mark.asyncio
    async def test_unknown_sound_is_skipped(self, performer):
        performer.provider.replies = ['Hmm @sound("nope") okay']
        reply = await performer.responder.respond("x", "carol")
        assert reply == "Hmm okay"
        assert performer.events.named("play-sound-effect") == []

    @pytest.mark.asyncio
    async def test_sound_added_while_running_reaches_prompt(self, performer):
        (performer.sounds.sounds_dir / "airhorn.wav").write_bytes(b"honk")
        performer.provider.replies = ['Honk @sound("airhorn") honk']

        await performer.responder.respond("hello", "alice")

        system_prompt = performer.provider.calls[0][0]["content"]
        assert "airhorn, vineboom" in system_prompt
        assert performer.events.named("sound-effects-updated")[-1] == {"sounds": ["airhorn", "vineboom"]}
        assert len(performer.events.named("play-sound-effect")) == 1

    @pytest.mark.asyncio
    async def test_autonomous_prompt_gets_hint(self, performer):
        await performer.responder.respond("topic", "System", RequestKind.AUTONOMOUS)
        system_prompt = performer.provider.calls[0][0]["content"]
        assert "talk on your own" in system_prompt
        assert performer.store.records[-1]["isAutoTalk"] is True

    @pytest.mark.asyncio
    async def test_user_history_reaches_prompt(self, performer):
        await performer.store.append({"type": "user", "username": "dave", "content": "first time here"})
        await performer.store.append({"type": "user", "username": "dave", "content": "love the stream"})

        await performer.responder.respond("hi again", "dave")

        system_prompt = performer.provider.calls[0][0]["content"]
        assert "USER CONTEXT for dave" in system_prompt
        assert '"first time here"' in system_prompt


class TestFailures:
    @pytest.mark.asyncio
    async def test_empty_completion_speaks_error_line(self, performer):
        performer.provider.replies = ["   "]

        reply = await performer.responder.respond("hello", "alice")

        assert reply is None
        assert performer.voice.spoken == [ERROR_LINE]
        assert performer.store.of_type("error")
        assert not performer.state.speaking

    @pytest.mark.asyncio
    async def test_stream_error_is_recorded_and_slot_released(self, performer):
        performer.provider.error = StreamError("connection reset")

        reply = await performer.responder.respond("hello", "alice")

        assert reply is None
        errors = performer.store.of_type("error")
        assert any("Streaming error" in e["content"] for e in errors)
        assert performer.events.current_subtitle == ERROR_LINE
        assert not performer.state.speaking

    @pytest.mark.asyncio
    async def test_tts_retries_then_succeeds(self, performer):
        performer.voice.failures = 2
        performer.provider.replies = ["Third time lucky"]

        await performer.responder.respond("hello", "alice")

        assert performer.voice.spoken == ["Third time lucky"]
        assert not performer.store.of_type("error")

    @pytest.mark.asyncio
    async def test_tts_degrades_to_text_only(self, performer):
        performer.voice.failures = 3
        performer.provider.replies = ["Nobody hears this"]

        reply = await performer.responder.respond("hello", "alice")

        assert reply == "Nobody hears this"
        assert performer.voice.spoken == []
        assert AUDIO_ERROR_NOTE in performer.events.current_subtitle
        assert any("TTS failed" in e["content"] for e in performer.store.of_type("error"))
        assert not performer.state.speaking


class TestAdmissionThroughResponder:
    @pytest.mark.asyncio
    async def test_chat_queued_while_speaking(self, performer):
        performer.state.speaking = True
        reply = await performer.responder.respond("hello", "alice")
        assert reply is None
        assert [r.username for r in performer.state.request_queue] == ["alice"]
        assert performer.provider.calls == []

    @pytest.mark.asyncio
    async def test_autonomous_dropped_while_singing(self, performer):
        performer.state.singing = True
        reply = await performer.responder.respond("topic", "System", RequestKind.AUTONOMOUS)
        assert reply is None
        assert not performer.state.request_queue
        assert performer.provider.calls == []

    @pytest.mark.asyncio
    async def test_say_verbatim_skips_completion(self, performer):
        assert await performer.responder.say_verbatim("Hello, erin!")
        assert performer.voice.spoken == ["Hello, erin!"]
        assert performer.provider.calls == []

    @pytest.mark.asyncio
    async def test_say_verbatim_dropped_while_busy(self, performer):
        performer.state.speaking = True
        assert not await performer.responder.say_verbatim("Hello!")
        assert performer.voice.spoken == []


class TestQueueDrain:
    @pytest.mark.asyncio
    async def test_queued_messages_are_answered_in_order(self, performer):
        performer.voice.gate = asyncio.Event()
        first = asyncio.create_task(performer.responder.respond("hello", "u0"))
        await wait_for(lambda: performer.voice.spoken)

        await performer.chat.handle_message("u1", "first!")
        await performer.chat.handle_message("u2", "second!")
        assert [r.username for r in performer.state.request_queue] == ["u1", "u2"]

        performer.voice.gate.set()
        await first
        await settle(performer)

        answered = [call[-1]["content"] for call in performer.provider.calls]
        assert answered == ["u0 says: hello", "u1 says: first!", "u2 says: second!"]

    @pytest.mark.asyncio
    async def test_drain_is_noop_while_busy(self, performer):
        performer.state.request_queue.append(ChatRequest("hi", "u1"))
        performer.state.singing = True
        await performer.responder.drain_next()
        assert len(performer.state.request_queue) == 1
        assert not performer.state.queue_draining


class TestSongDirective:
    @pytest.mark.asyncio
    async def test_only_first_song_directive_is_honoured(self, performer):
        performer.converter.finish_with()
        performer.provider.replies = [
            'Fine! @sing("Closer", "The Chainsmokers") and @sing("Other Song") okay',
        ]

        reply = await performer.responder.respond("sing something", "frank")

        assert reply == "Fine! and okay"
        await wait_for(lambda: performer.events.named("song-finished"))
        assert performer.media.searches == ["Closer by The Chainsmokers"]
        await settle(performer)
