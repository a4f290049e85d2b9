import pytest
from pydantic import ValidationError

from domain.models import LoopSourceDocument, SessionDocument, TrackDocument


def test_camel_case_aliases_populate_fields():
    track = TrackDocument.model_validate(
        {
            "id": "t1",
            "name": "Birds",
            "initialDelay": [1.0, 2.0],
            "source": {"type": "loop", "url": "/a.wav", "loopStart": 0.5, "fadeIn": [0.1, 0.3]},
        }
    )
    assert track.initial_delay == (1.0, 2.0)
    assert track.source is not None
    assert track.source.loop_start == 0.5
    assert track.source.fade_in == (0.1, 0.3)
    assert track.volume == 1.0 and track.pan == 0.0


def test_scalar_ranges_widen_to_pairs():
    source = LoopSourceDocument.model_validate({"url": "/a.wav", "fadeIn": 0.5})
    assert source.fade_in == (0.5, 0.5)
    track = TrackDocument.model_validate({"id": "t", "name": "n", "initialDelay": 2})
    assert track.initial_delay == (2.0, 2.0)


def test_unknown_source_type_is_rejected():
    with pytest.raises(ValidationError):
        TrackDocument.model_validate(
            {"id": "t", "name": "n", "source": {"type": "granular", "url": "/a.wav"}}
        )


def test_missing_required_fields_are_rejected():
    with pytest.raises(ValidationError):
        TrackDocument.model_validate({"name": "no id"})
    with pytest.raises(ValidationError):
        LoopSourceDocument.model_validate({"type": "loop"})


def test_session_rejects_duplicate_track_ids():
    with pytest.raises(ValidationError):
        SessionDocument.model_validate(
            {"tracks": [{"id": "a", "name": "A"}, {"id": "a", "name": "B"}]}
        )


@pytest.mark.parametrize("version", [0, 2])
def test_session_rejects_unsupported_versions(version):
    with pytest.raises(ValidationError):
        SessionDocument.model_validate({"version": version, "tracks": []})


def test_session_accepts_master_aliases_and_looks_up_tracks():
    session = SessionDocument.model_validate(
        {"masterVolume": 0.2, "masterPan": -1.0, "tracks": [{"id": "a", "name": "A"}]}
    )
    assert (session.volume, session.pan) == (0.2, -1.0)
    assert session.track("a") is not None
    assert session.track("missing") is None


def test_out_of_range_levels_are_left_for_parameters():
    track = TrackDocument.model_validate({"id": "t", "name": "n", "volume": 4.0, "pan": -9.0})
    assert (track.volume, track.pan) == (4.0, -9.0)
