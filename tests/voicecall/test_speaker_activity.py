"""Speaker activity tracker tests."""
from voicecall.voice.call_events import (
    Role,
    SpeechEnded,
    SpeechStarted,
    TranscriptFragment,
    TranscriptReplay,
    VolumeSample,
)
from voicecall.voice.call_state import CallState
from voicecall.voice.call_view import status_text
from voicecall.voice.speaker_activity import SpeakerActivityTracker, track_speaker


class TestTrackSpeaker:

    def test_speech_start_sets_speaker(self):
        assert track_speaker(None, SpeechStarted(Role.ASSISTANT)) == Role.ASSISTANT

    def test_speech_end_for_same_role_clears(self):
        assert track_speaker(Role.USER, SpeechEnded(Role.USER)) is None

    def test_speech_end_for_other_role_is_ignored(self):
        assert track_speaker(Role.USER, SpeechEnded(Role.ASSISTANT)) == Role.USER

    def test_partial_fragment_sets_speaker(self):
        assert track_speaker(None, TranscriptFragment(Role.USER, "he", final=False)) == Role.USER

    def test_final_fragment_clears_matching_speaker(self):
        assert track_speaker(Role.USER, TranscriptFragment(Role.USER, "hello")) is None

    def test_final_fragment_for_other_role_keeps_speaker(self):
        evt = TranscriptFragment(Role.USER, "late final")
        assert track_speaker(Role.ASSISTANT, evt) == Role.ASSISTANT

    def test_unrelated_event_keeps_speaker(self):
        assert track_speaker(Role.ASSISTANT, VolumeSample(0.2)) == Role.ASSISTANT

    def test_replay_is_applied_per_fragment(self):
        replay = TranscriptReplay((
            TranscriptFragment(Role.USER, "a"),
            TranscriptFragment(Role.ASSISTANT, "b", final=False),
        ))
        assert track_speaker(Role.USER, replay) == Role.ASSISTANT


class TestSpeakerActivityTracker:

    def test_apply_and_reset(self):
        tracker = SpeakerActivityTracker()
        assert tracker.current is None
        tracker.apply(SpeechStarted(Role.USER))
        assert tracker.current == Role.USER
        tracker.reset()
        assert tracker.current is None

    def test_speech_end_marks_awaiting_reply(self):
        tracker = SpeakerActivityTracker()
        tracker.apply(SpeechStarted(Role.USER))
        assert tracker.awaiting_reply is False
        tracker.apply(SpeechEnded(Role.USER))
        assert tracker.awaiting_reply is True
        # A late final transcript of the same utterance keeps waiting.
        tracker.apply(TranscriptFragment(Role.USER, "what time is it"))
        assert tracker.awaiting_reply is True
        tracker.apply(SpeechStarted(Role.ASSISTANT))
        assert tracker.awaiting_reply is False

    def test_speech_end_while_other_role_speaks_is_not_awaiting(self):
        tracker = SpeakerActivityTracker()
        tracker.apply(SpeechStarted(Role.ASSISTANT))
        tracker.apply(SpeechEnded(Role.USER))
        assert tracker.awaiting_reply is False

    def test_partial_fragment_and_reset_clear_awaiting_reply(self):
        tracker = SpeakerActivityTracker()
        tracker.apply(SpeechEnded(Role.ASSISTANT))
        tracker.apply(TranscriptFragment(Role.USER, "and", final=False))
        assert tracker.awaiting_reply is False
        tracker.apply(SpeechEnded(Role.USER))
        tracker.reset()
        assert tracker.awaiting_reply is False


class TestStatusText:

    def test_active_status_follows_speaker(self):
        assert status_text(CallState.ACTIVE) == "Listening..."
        assert status_text(CallState.ACTIVE, Role.ASSISTANT) == "Speaking..."
        assert status_text(CallState.ACTIVE, None, awaiting_reply=True) == "Thinking..."
        assert status_text(CallState.ACTIVE, Role.USER, awaiting_reply=True) == "Listening..."

    def test_thinking_only_while_active(self):
        assert status_text(CallState.ENDED, None, awaiting_reply=True) == "Call ended"
