"""Unit tests for PipelineController with fake adapters and clients."""

import asyncio
import threading
from pathlib import Path

import pytest
from pubsub import pub

from meetsum.audio.permissions import AuthorizationStatus
from meetsum.audio.playback import PlaybackUnavailable
from meetsum.errors import LinkParseError, NetworkError, RecorderInitError
from meetsum.models.events import LevelSampled, PlaybackFinished, PlaybackProgress
from meetsum.models.session import SessionStatus
from meetsum.services.status_publisher import PERMISSION_DENIED_TOPIC


def statuses(states):
    """Collapse consecutive duplicates so transitions read as a path."""
    path = []
    for state in states:
        if not path or path[-1] is not state.status:
            path.append(state.status)
    return path


async def ingest_and_wait(controller, path):
    accepted = await controller.ingest_external_file(path)
    await controller.join()
    return accepted


@pytest.mark.unit
class TestSizeDecision:

    def test_threshold_is_exclusive(self, make_controller):
        controller = make_controller()
        threshold = 20 * 1024 * 1024

        assert controller.should_chunk(threshold) is False
        assert controller.should_chunk(threshold + 1) is True
        assert controller.should_chunk(0) is False

    def test_decision_is_stable(self, make_controller):
        controller = make_controller(chunk_threshold_bytes=100)

        assert [controller.should_chunk(150) for _ in range(3)] == [True, True, True]
        assert [controller.should_chunk(100) for _ in range(3)] == [False, False, False]

    def test_file_at_threshold_is_single_shot(self, make_controller, fakes, temp_data_dir):
        backend = fakes.Backend(["whole meeting"])
        splitter = fakes.Splitter()
        relay = fakes.Relay()
        controller = make_controller(backend=backend, splitter=splitter, relay=relay,
                                     chunk_threshold_bytes=100)
        source = fakes.write_audio_file(Path(temp_data_dir) / "at.m4a", 100)

        asyncio.run(ingest_and_wait(controller, source))

        assert splitter.exported == []
        assert len(backend.calls) == 1
        assert backend.calls[0] == (b"\x00" * 100, "at.m4a")
        assert relay.transcripts == ["whole meeting"]
        assert controller.state.status is SessionStatus.COMPLETE

    def test_file_above_threshold_is_chunked(self, make_controller, fakes, temp_data_dir):
        backend = fakes.Backend(["one", "two", "three"])
        splitter = fakes.Splitter(duration=1500.0)
        relay = fakes.Relay()
        controller = make_controller(backend=backend, splitter=splitter, relay=relay,
                                     chunk_threshold_bytes=100)
        source = fakes.write_audio_file(Path(temp_data_dir) / "above.m4a", 101)

        asyncio.run(ingest_and_wait(controller, source))

        assert [name for _, name in backend.calls] == [
            "above_chunk_000.m4a", "above_chunk_001.m4a", "above_chunk_002.m4a"]
        assert relay.transcripts == ["one two three"]
        assert controller.state.status is SessionStatus.COMPLETE


@pytest.mark.unit
class TestRecording:

    def test_record_stop_and_complete(self, make_controller, fake_capture, fakes, state_log):
        relay = fakes.Relay(link="https://notes.example.com/s/77")
        controller = make_controller(relay=relay)

        async def scenario():
            assert await controller.start() is True
            assert controller.state.status is SessionStatus.RECORDING
            target = fake_capture.start.call_args[0][0]
            fakes.write_audio_file(target, 2048)
            await controller.stop()
            await controller.join()

        asyncio.run(scenario())

        assert statuses(state_log) == [
            SessionStatus.RECORDING,
            SessionStatus.PREPARING_PLAYBACK,
            SessionStatus.TRANSCRIBING,
            SessionStatus.RELAYING,
            SessionStatus.COMPLETE,
        ]
        final = controller.state
        assert final.result_url == "https://notes.example.com/s/77"
        assert final.error_message is None
        assert final.has_recording is True
        assert final.duration == 12.5
        assert controller.session.status is SessionStatus.COMPLETE

    def test_levels_only_while_recording(self, make_controller, fake_capture, fakes):
        controller = make_controller()

        async def scenario():
            await controller.start()
            controller.notify(LevelSampled(level=0.7))
            await asyncio.sleep(0)
            recorded_level = controller.state.level
            fakes.write_audio_file(fake_capture.start.call_args[0][0], 10)
            await controller.stop()
            controller.notify(LevelSampled(level=0.9))
            await asyncio.sleep(0)
            level_after_stop = controller.state.level
            await controller.join()
            return recorded_level, level_after_stop

        recorded_level, level_after_stop = asyncio.run(scenario())

        assert recorded_level == 0.7
        assert level_after_stop == 0.0

    def test_second_start_while_recording_is_refused(self, make_controller, fake_capture):
        controller = make_controller()

        async def scenario():
            assert await controller.start() is True
            session_id = controller.session.id
            assert await controller.start() is False
            return session_id

        session_id = asyncio.run(scenario())

        assert controller.session.id == session_id
        assert fake_capture.start.call_count == 1

    def test_missing_recording_fails(self, make_controller, fakes):
        backend = fakes.Backend()
        controller = make_controller(backend=backend)

        async def scenario():
            await controller.start()
            await controller.stop()

        asyncio.run(scenario())

        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message.startswith("EmptyRecording")
        assert backend.calls == []

    def test_zero_byte_recording_fails(self, make_controller, fake_capture, fakes):
        controller = make_controller()

        async def scenario():
            await controller.start()
            fakes.write_audio_file(fake_capture.start.call_args[0][0], 0)
            await controller.stop()

        asyncio.run(scenario())

        assert controller.state.status is SessionStatus.FAILED
        assert "EmptyRecording" in controller.state.error_message

    def test_recorder_init_error(self, make_controller, fake_capture):
        fake_capture.start.side_effect = RecorderInitError("device busy")
        controller = make_controller()

        assert asyncio.run(controller.start()) is False
        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message == "RecorderInitError: device busy"

    def test_encode_failure_is_reported(self, make_controller, fake_capture, fakes, state_log):
        backend = fakes.Backend()
        controller = make_controller(backend=backend)
        fake_capture.stop.side_effect = RecorderInitError(
            "could not encode recording (raw audio kept at meeting.wav): Unknown encoder 'aac'")

        async def scenario():
            await controller.start()
            await controller.stop()

        asyncio.run(scenario())

        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message.startswith("RecorderInitError: could not encode")
        assert "Unknown encoder 'aac'" in controller.state.error_message
        assert "EmptyRecording" not in controller.state.error_message
        assert backend.calls == []
        assert controller._finalizing is False
        assert statuses(state_log)[-1] is SessionStatus.FAILED

    def test_stop_when_not_recording_does_nothing(self, make_controller, fake_capture, state_log):
        controller = make_controller()

        asyncio.run(controller.stop())

        fake_capture.stop.assert_not_called()
        assert state_log == []


@pytest.mark.unit
class TestMicrophonePermission:

    @pytest.fixture
    def denials(self):
        received = []

        def listener(status):
            received.append(status)

        pub.subscribe(listener, PERMISSION_DENIED_TOPIC)
        yield received
        pub.unsubscribe(listener, PERMISSION_DENIED_TOPIC)

    @pytest.mark.parametrize("status", [AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED])
    def test_denied_fails_without_prompting(self, make_controller, fake_authorizer, fake_capture,
                                            denials, status):
        fake_authorizer.status.return_value = status
        controller = make_controller()

        assert asyncio.run(controller.start()) is False

        fake_authorizer.request_access.assert_not_called()
        fake_capture.start.assert_not_called()
        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message.startswith("PermissionDenied")
        assert denials == [status.value]

    def test_prompt_granted_starts_recording(self, make_controller, fake_authorizer, fake_capture):
        fake_authorizer.status.return_value = AuthorizationStatus.NOT_DETERMINED

        def grant():
            fake_authorizer.status.return_value = AuthorizationStatus.AUTHORIZED
            return True

        fake_authorizer.request_access.side_effect = grant
        controller = make_controller()

        assert asyncio.run(controller.start()) is True
        assert controller.state.status is SessionStatus.RECORDING
        fake_capture.start.assert_called_once()

    def test_prompt_refused_fails_and_is_remembered(self, make_controller, fake_authorizer, denials):
        fake_authorizer.status.return_value = AuthorizationStatus.NOT_DETERMINED

        def refuse():
            fake_authorizer.status.return_value = AuthorizationStatus.DENIED
            return False

        fake_authorizer.request_access.side_effect = refuse
        controller = make_controller()

        async def scenario():
            first = await controller.start()
            second = await controller.start()
            return first, second

        assert asyncio.run(scenario()) == (False, False)
        assert fake_authorizer.request_access.call_count == 1
        assert controller.state.status is SessionStatus.FAILED
        assert denials == ["denied", "denied"]

    def test_open_privacy_settings_delegates(self, make_controller, fake_authorizer):
        fake_authorizer.open_privacy_settings.return_value = True

        assert make_controller().open_privacy_settings() is True


@pytest.mark.unit
class TestExternalFiles:

    def test_refused_while_recording(self, make_controller, temp_data_dir, fakes):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        async def scenario():
            await controller.start()
            return await controller.ingest_external_file(source)

        assert asyncio.run(scenario()) is False
        assert controller.state.status is SessionStatus.RECORDING

    def test_accepted_after_failure(self, make_controller, temp_data_dir, fakes):
        relay = fakes.Relay(error=LinkParseError("could not parse summary URL: 'soon'"))
        controller = make_controller(relay=relay)
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        async def scenario():
            await ingest_and_wait(controller, source)
            failed_status = controller.state.status
            relay.error = None
            accepted = await ingest_and_wait(controller, source)
            return failed_status, accepted

        failed_status, accepted = asyncio.run(scenario())

        assert failed_status is SessionStatus.FAILED
        assert accepted is True
        assert controller.state.status is SessionStatus.COMPLETE

    def test_missing_external_file_fails(self, make_controller, temp_data_dir):
        controller = make_controller()

        assert asyncio.run(ingest_and_wait(controller, Path(temp_data_dir) / "nope.m4a")) is True
        assert controller.state.status is SessionStatus.FAILED
        assert "EmptyRecording" in controller.state.error_message

    def test_playback_prep_failure_does_not_fail_pipeline(self, make_controller, fake_playback,
                                                          temp_data_dir, fakes):
        fake_playback.load.side_effect = PlaybackUnavailable("no decoder")
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        asyncio.run(ingest_and_wait(controller, source))

        assert controller.state.status is SessionStatus.COMPLETE
        assert controller.state.has_recording is False


@pytest.mark.unit
class TestFailures:

    def test_chunk_failure_aborts_without_relay(self, make_controller, fakes, temp_data_dir,
                                                file_manager):
        backend = fakes.Backend(["a", NetworkError("connection reset", domain="ClientOSError", code=54), "c"])
        relay = fakes.Relay()
        controller = make_controller(backend=backend, relay=relay, chunk_threshold_bytes=10)
        source = fakes.write_audio_file(Path(temp_data_dir) / "long.m4a", 11)

        asyncio.run(ingest_and_wait(controller, source))

        assert len(backend.calls) == 2
        assert relay.transcripts == []
        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message.startswith("NetworkError")
        assert "code: 54" in controller.state.error_message
        assert list(file_manager.chunks_dir.iterdir()) == []

    def test_export_failure(self, make_controller, fakes, temp_data_dir):
        splitter = fakes.Splitter(fail_at=1)
        relay = fakes.Relay()
        controller = make_controller(splitter=splitter, relay=relay, chunk_threshold_bytes=10)
        source = fakes.write_audio_file(Path(temp_data_dir) / "long.m4a", 11)

        asyncio.run(ingest_and_wait(controller, source))

        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message.startswith("ExportFailed")
        assert relay.transcripts == []
        assert not any(path.exists() for path in splitter.exported)

    def test_relay_failure_message(self, make_controller, fakes, temp_data_dir):
        relay = fakes.Relay(error=LinkParseError("could not parse summary URL: 'soon'"))
        controller = make_controller(relay=relay)
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        asyncio.run(ingest_and_wait(controller, source))

        assert controller.state.status is SessionStatus.FAILED
        assert controller.state.error_message == "LinkParseError: could not parse summary URL: 'soon'"
        assert controller.state.result_url is None

    def test_unexpected_error_is_reported(self, make_controller, fakes, temp_data_dir):
        controller = make_controller(backend=fakes.Backend([RuntimeError("boom")]))
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        asyncio.run(ingest_and_wait(controller, source))

        assert controller.state.status is SessionStatus.FAILED
        assert "unexpected error: boom" in controller.state.error_message


@pytest.mark.unit
class TestSupersededSessions:

    def test_new_recording_discards_in_flight_work(self, make_controller, fakes, temp_data_dir,
                                                   state_log):
        relay = fakes.Relay()

        class StallingBackend:
            language = "ko"

            def __init__(self):
                self.started = asyncio.Event()

            async def transcribe(self, audio_bytes, file_name):
                self.started.set()
                await asyncio.sleep(3600)
                return "never"

        source = fakes.write_audio_file(Path(temp_data_dir) / "old.m4a", 10)

        async def scenario():
            backend = StallingBackend()
            controller = make_controller(backend=backend, relay=relay)
            await controller.ingest_external_file(source)
            await backend.started.wait()
            old_session = controller.session.id
            assert controller.state.is_uploading

            assert await controller.start() is True
            for _ in range(3):
                await asyncio.sleep(0)
            await controller.shutdown()
            return controller, old_session

        controller, old_session = asyncio.run(scenario())

        assert relay.transcripts == []
        assert controller.session.id != old_session
        assert controller.state.session_id == controller.session.id
        assert controller.state.status is SessionStatus.RECORDING
        assert all(state.session_id == controller.session.id
                   for state in state_log if state.status is SessionStatus.RECORDING)

    def test_late_chunk_result_does_not_touch_new_session(self, make_controller, fakes, temp_data_dir,
                                                          file_manager, state_log):
        relay = fakes.Relay()
        splitter = fakes.Splitter(duration=3000)

        class SlowSecondChunkBackend:
            """Blocks on the second chunk and answers only after being released."""
            language = "ko"

            def __init__(self):
                self.calls = []
                self.stalled = asyncio.Event()
                self.release = asyncio.Event()

            async def transcribe(self, audio_bytes, file_name):
                self.calls.append(file_name)
                if len(self.calls) == 2:
                    self.stalled.set()
                    try:
                        await self.release.wait()
                    except asyncio.CancelledError:
                        # An upload already on the wire still completes
                        await self.release.wait()
                return f"part {len(self.calls)}"

        source = fakes.write_audio_file(Path(temp_data_dir) / "long.m4a", 11)

        async def scenario():
            backend = SlowSecondChunkBackend()
            controller = make_controller(backend=backend, relay=relay, splitter=splitter,
                                         chunk_threshold_bytes=10)
            await controller.ingest_external_file(source)
            await backend.stalled.wait()
            old_session = controller.session.id
            old_task = controller._task

            assert await controller.start() is True
            new_session = controller.session.id
            backend.release.set()
            await asyncio.wait({old_task})
            return controller, backend, old_session, new_session

        controller, backend, old_session, new_session = asyncio.run(scenario())

        assert len(backend.calls) == 2
        assert len(splitter.exported) == 2
        assert relay.transcripts == []
        assert controller.state.session_id == new_session
        assert controller.state.status is SessionStatus.RECORDING
        assert controller.state.error_message is None
        first_new = next(i for i, state in enumerate(state_log) if state.session_id == new_session)
        assert all(state.session_id == new_session for state in state_log[first_new:])
        assert any(state.session_id == old_session for state in state_log[:first_new])
        assert list(file_manager.chunks_dir.iterdir()) == []


@pytest.mark.unit
class TestPlayback:

    def test_progress_and_finish_events(self, make_controller, fake_playback, fakes, temp_data_dir):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        async def scenario():
            await ingest_and_wait(controller, source)
            controller.play()
            playing = controller.state.is_playing
            controller.notify(PlaybackProgress(position=3.0, source=source))
            await asyncio.sleep(0)
            position = controller.state.position
            controller.notify(PlaybackFinished(source=source))
            await asyncio.sleep(0)
            return playing, position

        playing, position = asyncio.run(scenario())

        fake_playback.play.assert_called_once()
        assert playing is True
        assert position == 3.0
        assert controller.state.position == 12.5
        assert controller.state.is_playing is False

    def test_progress_queued_during_pause_keeps_cursor_paused(self, make_controller, fake_playback,
                                                              fakes, temp_data_dir):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        def pause_after_last_write():
            # The output thread reports one more write before it notices the halt
            writer = threading.Thread(
                target=controller.notify, args=(PlaybackProgress(position=4.0, source=source),))
            writer.start()
            writer.join()
            fake_playback.is_playing = False

        fake_playback.pause.side_effect = pause_after_last_write

        async def scenario():
            await ingest_and_wait(controller, source)
            controller.play()
            controller.pause()
            for _ in range(3):
                await asyncio.sleep(0)

        asyncio.run(scenario())

        assert controller.state.is_playing is False
        assert controller.state.position == 0.0

    def test_new_session_ignores_previous_recordings_playback(self, make_controller, fake_playback,
                                                              fakes, temp_data_dir):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)

        def stop_with_late_progress():
            # Adapter still flagged as playing when its last progress lands
            writer = threading.Thread(
                target=controller.notify, args=(PlaybackProgress(position=6.0, source=source),))
            writer.start()
            writer.join()

        async def scenario():
            await ingest_and_wait(controller, source)
            controller.play()
            old_session = controller.session.id
            fake_playback.stop.side_effect = stop_with_late_progress
            assert await controller.start() is True
            for _ in range(3):
                await asyncio.sleep(0)
            return old_session

        old_session = asyncio.run(scenario())

        state = controller.state
        assert state.session_id != old_session
        assert state.status is SessionStatus.RECORDING
        assert state.has_recording is False
        assert state.is_playing is False
        assert state.position == 0.0

    def test_progress_for_another_file_is_dropped(self, make_controller, fakes, temp_data_dir):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)
        other = Path(temp_data_dir) / "other.m4a"

        async def scenario():
            await ingest_and_wait(controller, source)
            controller.play()
            controller.notify(PlaybackProgress(position=5.0, source=other))
            controller.notify(PlaybackFinished(source=other))
            await asyncio.sleep(0)

        asyncio.run(scenario())

        assert controller.state.position == 0.0
        assert controller.state.is_playing is True

    def test_seek_is_clamped(self, make_controller, fakes, temp_data_dir):
        controller = make_controller()
        source = fakes.write_audio_file(Path(temp_data_dir) / "ext.m4a", 10)
        asyncio.run(ingest_and_wait(controller, source))

        controller.seek(20.0)
        assert controller.state.position == 12.5
        controller.seek(-4.0)
        assert controller.state.position == 0.0

    def test_play_without_recording_does_nothing(self, make_controller, fake_playback):
        controller = make_controller()

        controller.play()

        fake_playback.play.assert_not_called()
        assert controller.state.is_playing is False
