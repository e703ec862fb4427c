"""End-to-end tests for the recording orchestrator over fake devices and recognizers.

Covers real-time and batch recognition flows, late-event discard, start
failure cleanup, persistence guards and document loading.
"""

import asyncio
from datetime import date

import pytest

from conftest import FakeBackend, FakeBatchRecognizer, FakeTransport, tone_block
from voicenote.core.errors import (
    AlreadyRecording,
    DeviceUnavailable,
    MalformedDocument,
    NoRecording,
    NothingToSave,
    NotRecording,
    RecognitionError,
    RecognitionNotConfigured,
)
from voicenote.core.models import (
    ArtifactFormat,
    ConnectionState,
    Provenance,
    RecognitionEvent,
    SessionState,
)


def _texts(orchestrator):
    return [s.text for s in orchestrator.segments]


# ---------------------------------------------------------------------------
# TestRealtimeFlow
# ---------------------------------------------------------------------------


class TestRealtimeFlow:

    def test_partials_and_finals_build_transcript(self, make_orchestrator):
        transport = FakeTransport()
        orchestrator = make_orchestrator(transport=transport, language="en")

        async def scenario():
            await orchestrator.start_session(realtime=True)
            assert orchestrator.is_realtime
            stream, language = transport.started_with
            assert stream is orchestrator.controller.stream
            assert language == "en"

            transport.emit_partial("hel")
            transport.emit_partial("hello wor")
            await orchestrator.drain_events()
            provisional = [s for s in orchestrator.segments if s.provisional]

            transport.emit_final("hello world")
            transport.emit_partial("next")
            await orchestrator.drain_events()
            snapshot = [(s.text, s.provisional) for s in orchestrator.segments]

            artifact = await orchestrator.stop_session()
            return provisional, snapshot, artifact

        provisional, snapshot, artifact = asyncio.run(scenario())

        assert [s.text for s in provisional] == ["hello wor"]
        assert snapshot == [("hello world", False), ("next", True)]
        assert artifact is orchestrator.artifact
        assert transport.stop_calls == 1

    def test_events_after_stop_are_discarded(self, make_orchestrator):
        transport = FakeTransport(final_on_stop="too late")
        orchestrator = make_orchestrator(transport=transport)

        async def scenario():
            await orchestrator.start_session(realtime=True)
            transport.emit_final("on time")
            await orchestrator.stop_session()
            accepted = transport.captured_channel.publish(RecognitionEvent.final("later"))
            await asyncio.sleep(0)
            return accepted

        accepted = asyncio.run(scenario())
        assert accepted is False
        assert _texts(orchestrator) == ["on time"]

    def test_queued_events_applied_before_stop(self, make_orchestrator):
        transport = FakeTransport()
        orchestrator = make_orchestrator(transport=transport)

        async def scenario():
            await orchestrator.start_session(realtime=True)
            transport.emit_final("a")
            transport.emit_final("b")
            # No drain: stop must still apply events that were already queued
            await orchestrator.stop_session()

        asyncio.run(scenario())
        assert _texts(orchestrator) == ["a", "b"]

    def test_realtime_skips_batch_transcription(self, make_orchestrator):
        batch = FakeBatchRecognizer()
        orchestrator = make_orchestrator(transport=FakeTransport(), batch_recognizer=batch)

        async def scenario():
            await orchestrator.start_session(realtime=True)
            await orchestrator.stop_session()

        asyncio.run(scenario())
        assert batch.calls == []

    def test_connection_status_forwarded(self, make_orchestrator):
        transport = FakeTransport()
        orchestrator = make_orchestrator(transport=transport)
        statuses = []
        orchestrator.signals.connection_status_changed.connect(statuses.append)

        async def scenario():
            await orchestrator.start_session(realtime=True)
            await orchestrator.stop_session()

        asyncio.run(scenario())
        assert [s.state for s in statuses] == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]

    def test_realtime_without_transport_touches_no_device(self, make_orchestrator):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend=backend)
        errors = []
        orchestrator.signals.error_occurred.connect(errors.append)

        with pytest.raises(RecognitionNotConfigured):
            asyncio.run(orchestrator.start_session(realtime=True))

        assert backend.streams == []
        assert len(errors) == 1

    def test_unconfigured_transport_rejected(self, make_orchestrator):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend=backend, transport=FakeTransport(configured=False))
        with pytest.raises(RecognitionNotConfigured):
            asyncio.run(orchestrator.start_session(realtime=True))
        assert backend.streams == []

    def test_transport_start_failure_releases_session(self, make_orchestrator):
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend=backend, transport=FakeTransport(fail_on_start=True))

        with pytest.raises(RecognitionError):
            asyncio.run(orchestrator.start_session(realtime=True))

        assert orchestrator.controller.state is SessionState.IDLE
        assert backend.last_stream.closed
        assert not orchestrator.is_realtime
        assert orchestrator.artifact is None


# ---------------------------------------------------------------------------
# TestBatchFlow
# ---------------------------------------------------------------------------


class TestBatchFlow:

    def test_batch_result_becomes_single_final(self, make_orchestrator):
        batch = FakeBatchRecognizer(text="the whole recording")
        backend = FakeBackend()
        orchestrator = make_orchestrator(backend=backend, batch_recognizer=batch, language="de")

        async def scenario():
            await orchestrator.start_session()
            backend.last_stream.emit(tone_block(1600))
            return await orchestrator.stop_session()

        artifact = asyncio.run(scenario())

        assert len(batch.calls) == 1
        assert batch.calls[0] == (artifact, "de")
        assert [(s.text, s.provenance, s.provisional) for s in orchestrator.segments] == [
            ("the whole recording", Provenance.MACHINE, False),
        ]

    def test_batch_appends_after_existing_text(self, make_orchestrator):
        orchestrator = make_orchestrator(batch_recognizer=FakeBatchRecognizer(text="spoken"))
        orchestrator.edit_text("typed first")

        async def scenario():
            await orchestrator.start_session()
            await orchestrator.stop_session()

        asyncio.run(scenario())
        assert _texts(orchestrator) == ["typed first", "spoken"]

    def test_missing_batch_recognizer_keeps_artifact(self, make_orchestrator):
        orchestrator = make_orchestrator()

        async def scenario():
            await orchestrator.start_session()
            await orchestrator.stop_session()

        with pytest.raises(RecognitionNotConfigured):
            asyncio.run(scenario())

        assert orchestrator.artifact is not None
        assert orchestrator.controller.state is SessionState.IDLE
        assert _texts(orchestrator) == []

    def test_stop_without_session(self, make_orchestrator):
        with pytest.raises(NotRecording):
            asyncio.run(make_orchestrator().stop_session())

    def test_device_failure_propagates(self, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(DeviceUnavailable):
            asyncio.run(orchestrator.start_session(device_id="missing"))
        assert not orchestrator.is_recording

    def test_recording_signals(self, make_orchestrator):
        orchestrator = make_orchestrator(batch_recognizer=FakeBatchRecognizer())
        events = []
        orchestrator.signals.recording_started.connect(lambda: events.append("started"))
        orchestrator.signals.recording_stopped.connect(lambda: events.append("stopped"))

        async def scenario():
            await orchestrator.start_session()
            await orchestrator.stop_session()

        asyncio.run(scenario())
        assert events == ["started", "stopped"]


# ---------------------------------------------------------------------------
# TestPersistence
# ---------------------------------------------------------------------------


class TestPersistence:

    def test_empty_document_is_not_saved(self, make_orchestrator, tmp_path):
        orchestrator = make_orchestrator()
        with pytest.raises(NothingToSave):
            asyncio.run(orchestrator.save_document("Empty"))
        assert list(tmp_path.iterdir()) == []

    def test_provisional_only_document_is_not_saved(self, make_orchestrator, tmp_path):
        orchestrator = make_orchestrator()
        orchestrator.reconciler.apply_partial("still talking")
        with pytest.raises(NothingToSave):
            asyncio.run(orchestrator.save_document())
        assert list(tmp_path.iterdir()) == []

    def test_failed_save_keeps_title(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.title = "Current"
        with pytest.raises(NothingToSave):
            asyncio.run(orchestrator.save_document("Renamed"))
        assert orchestrator.title == "Current"

    def test_save_document_filename_and_content(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.reconciler.apply_final("spoken words")
        orchestrator.edit_text("spoken words typed")
        saved = []
        orchestrator.signals.document_saved.connect(saved.append)

        path = asyncio.run(orchestrator.save_document("Team Sync: Q3"))

        assert path.name == f"team_sync_q3_{date.today().isoformat()}.html"
        html = path.read_text(encoding="utf-8")
        assert "<h1>Team Sync: Q3</h1>" in html
        assert '<span style="color: #22c55e;">spoken words typed</span>' in html
        assert saved == [str(path)]

    def test_save_audio_requires_recording(self, make_orchestrator):
        with pytest.raises(NoRecording):
            asyncio.run(make_orchestrator().save_audio())

    def test_save_audio_native(self, make_orchestrator):
        orchestrator = make_orchestrator(batch_recognizer=FakeBatchRecognizer())

        async def scenario():
            await orchestrator.start_session()
            await orchestrator.stop_session()
            return await orchestrator.save_audio("take one.mp3", ArtifactFormat.NATIVE_CONTAINER)

        path = asyncio.run(scenario())
        assert path.name == "take one.wav"
        assert path.read_bytes()[:4] == b"RIFF"

    def test_save_audio_transcodes_to_mp3(self, make_orchestrator):
        orchestrator = make_orchestrator(batch_recognizer=FakeBatchRecognizer())

        async def scenario():
            await orchestrator.start_session(artifact_format=ArtifactFormat.COMPRESSED_MP3)
            await orchestrator.stop_session()
            return await orchestrator.save_audio()

        path = asyncio.run(scenario())
        assert path.suffix == ".mp3"
        assert path.read_bytes().startswith(b"ID3")
        assert len(orchestrator.transcoder.calls) == 1


# ---------------------------------------------------------------------------
# TestDocumentLoading
# ---------------------------------------------------------------------------


class TestDocumentLoading:

    def test_load_replaces_document(self, make_orchestrator):
        source = make_orchestrator()
        source.reconciler.apply_final("machine text")
        source.edit_text("machine text")
        source.reconciler.apply_final("more")
        source.set_language("fr")
        path = asyncio.run(source.save_document("Loaded"))

        target = make_orchestrator()
        target.reconciler.apply_final("old")
        document = asyncio.run(target.load_document(path))

        assert document.title == "Loaded"
        assert target.title == "Loaded"
        assert target.language == "fr"
        assert _texts(target) == ["machine text", "more"]

    def test_malformed_document_leaves_current_untouched(self, make_orchestrator, tmp_path):
        bad = tmp_path / "bad.html"
        bad.write_text("<html><body><p>no content</p></body></html>", encoding="utf-8")

        orchestrator = make_orchestrator()
        orchestrator.title = "Current"
        orchestrator.reconciler.apply_final("keep me")

        with pytest.raises(MalformedDocument):
            asyncio.run(orchestrator.load_document(bad))

        assert orchestrator.title == "Current"
        assert _texts(orchestrator) == ["keep me"]

    def test_missing_file_leaves_current_untouched(self, make_orchestrator, tmp_path):
        orchestrator = make_orchestrator()
        orchestrator.reconciler.apply_final("keep me")
        with pytest.raises(OSError):
            asyncio.run(orchestrator.load_document(tmp_path / "nope.html"))
        assert _texts(orchestrator) == ["keep me"]

    def test_undecodable_file_is_reported_as_malformed(self, make_orchestrator, tmp_path):
        bad = tmp_path / "binary.html"
        bad.write_bytes(b"\xff\xfe\x00<h1>\x9c</h1>")

        orchestrator = make_orchestrator()
        orchestrator.reconciler.apply_final("keep me")
        errors = []
        orchestrator.signals.error_occurred.connect(errors.append)

        with pytest.raises(MalformedDocument):
            asyncio.run(orchestrator.load_document(bad))

        assert len(errors) == 1
        assert _texts(orchestrator) == ["keep me"]

    def test_load_while_recording_rejected(self, make_orchestrator, tmp_path):
        orchestrator = make_orchestrator(batch_recognizer=FakeBatchRecognizer())

        async def scenario():
            await orchestrator.start_session()
            try:
                with pytest.raises(AlreadyRecording):
                    await orchestrator.load_document(tmp_path / "any.html")
            finally:
                await orchestrator.stop_session()

        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# TestEditing
# ---------------------------------------------------------------------------


class TestEditing:

    def test_clear_resets_title_and_segments(self, make_orchestrator):
        orchestrator = make_orchestrator(title="Draft")
        orchestrator.edit_text("something")
        orchestrator.clear()
        assert orchestrator.title == "Untitled Note"
        assert orchestrator.segments == []

    def test_segments_changed_signal(self, make_orchestrator):
        orchestrator = make_orchestrator()
        snapshots = []
        orchestrator.signals.segments_changed.connect(snapshots.append)
        orchestrator.edit_text("hello")
        assert [s.text for s in snapshots[-1]] == ["hello"]

    def test_list_devices(self, make_orchestrator):
        assert len(make_orchestrator().list_devices()) == 2
