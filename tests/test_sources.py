import asyncio
from pathlib import Path

import numpy as np
import pytest

from audio.processor import PlayState
from audio.simulated import SimulatedAudioBackend
from audio.sources import (
    AssetLoadError,
    FileAssetFetcher,
    LoopSampleSource,
    SourceKind,
    source_from_document,
)
from domain.models import LoopSourceDocument

from conftest import DEFAULT_SAMPLE, MemoryFetcher, make_wav


async def _loaded_source(backend, fetcher, rng=None) -> LoopSampleSource:
    source = LoopSampleSource(backend, fetcher, rng=rng)
    await source.load(DEFAULT_SAMPLE)
    return source


def test_unloaded_source_ignores_play(backend: SimulatedAudioBackend, fetcher: MemoryFetcher):
    source = LoopSampleSource(backend, fetcher)
    source.play(0.0)
    assert source.play_state.value is PlayState.STOPPED
    assert backend.buffer_sources() == []
    assert source.input is None
    assert source.type == SourceKind.LOOP.value


@pytest.mark.asyncio
async def test_load_records_url_and_flags(backend, fetcher):
    source = LoopSampleSource(backend, fetcher)
    seen: list[bool] = []
    source.is_loaded.on_change(seen.append)

    await source.load(DEFAULT_SAMPLE)

    assert source.is_loaded.value is True
    assert source.url == DEFAULT_SAMPLE
    assert source.buffer is not None
    assert source.buffer.duration == pytest.approx(2.0)
    assert seen == [True]


@pytest.mark.asyncio
async def test_load_failure_propagates_as_asset_error(backend, fetcher):
    source = LoopSampleSource(backend, fetcher)
    with pytest.raises(AssetLoadError) as excinfo:
        await source.load("/missing.wav")
    assert excinfo.value.url == "/missing.wav"
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)
    assert source.is_loaded.value is False
    assert source.url is None


@pytest.mark.asyncio
async def test_decode_failure_propagates_as_asset_error(backend):
    fetcher = MemoryFetcher({"/broken.wav": b"not audio"})
    source = LoopSampleSource(backend, fetcher)
    with pytest.raises(AssetLoadError):
        await source.load("/broken.wav")


class _RejectingFetcher:
    async def fetch(self, url: str) -> bytes:
        raise LookupError(f"no route to {url}")


@pytest.mark.asyncio
async def test_any_fetch_failure_is_wrapped_as_asset_error(backend):
    source = LoopSampleSource(backend, _RejectingFetcher())
    with pytest.raises(AssetLoadError) as excinfo:
        await source.load("/remote.wav")
    assert excinfo.value.url == "/remote.wav"
    assert isinstance(excinfo.value.__cause__, LookupError)
    assert source.is_loaded.value is False


@pytest.mark.asyncio
async def test_play_schedules_looping_node_with_fixed_fade(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.fade_in.value = (0.5, 0.5)
    source.loop_start.value = 0.25

    source.play(1.0, 0.2)

    [node] = backend.buffer_sources()
    assert node.loop is True
    assert node.loop_start == pytest.approx(0.25)
    assert (node.started_at, node.start_offset) == (1.0, 0.2)
    assert node.targets == [source.output]
    assert source.last_fade == 0.5
    assert source.output.gain.value_at(1.0) == pytest.approx(0.0)
    assert source.output.gain.value_at(1.25) == pytest.approx(0.5)
    assert source.output.gain.value_at(1.5) == pytest.approx(1.0)
    assert source.is_playing.value is True


@pytest.mark.asyncio
async def test_fixed_fade_never_randomizes(backend, fetcher):
    source = await _loaded_source(backend, fetcher, rng=np.random.default_rng(3))
    source.fade_in.value = (0.5, 0.5)
    fades = []
    for _ in range(5):
        source.play(backend.current_time)
        fades.append(source.last_fade)
        source.stop()
    assert fades == [0.5] * 5


@pytest.mark.asyncio
async def test_random_fade_stays_within_bounds(backend, fetcher):
    source = await _loaded_source(backend, fetcher, rng=np.random.default_rng(3))
    source.fade_in.value = (1.0, 2.0)
    source.play(0.0)
    assert 1.0 <= source.last_fade < 2.0


@pytest.mark.asyncio
async def test_zero_fade_sets_unity_gain(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.play(0.0)
    assert source.last_fade == 0.0
    assert source.output.gain.value == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_only_one_live_node_at_a_time(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.play(0.0)
    source.play(0.0)
    first, second = backend.buffer_sources()
    assert first.stopped and first.targets == []
    assert not second.stopped


@pytest.mark.asyncio
async def test_pause_and_resume_continue_from_offset_without_fade(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.fade_in.value = (0.3, 0.3)
    source.play(backend.current_time)
    backend.advance(0.75)

    elapsed = source.elapsed_time
    source.pause()
    assert source.play_state.value is PlayState.PAUSED
    assert source.elapsed_time == pytest.approx(elapsed)

    backend.advance(5.0)
    source.resume()
    resumed = backend.buffer_sources()[-1]
    assert resumed.start_offset == pytest.approx(0.75)
    assert resumed.started_at == pytest.approx(backend.current_time)
    assert source.last_fade == 0.0


@pytest.mark.asyncio
async def test_pause_is_noop_unless_playing(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.pause()
    assert source.play_state.value is PlayState.STOPPED


@pytest.mark.asyncio
async def test_elapsed_time_wraps_at_loop_start(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.loop_start.value = 0.5
    source.play(0.0)
    backend.advance(2.25)
    # 2s buffer looping over [0.5, 2.0): 2.25 -> 0.5 + 0.25
    assert source.elapsed_time == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_stop_resets_offsets(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.play(0.0)
    backend.advance(1.0)
    source.pause()
    source.stop()
    source.stop()
    assert source.elapsed_time == 0.0
    source.resume()
    assert backend.buffer_sources()[-1].start_offset == 0.0


@pytest.mark.asyncio
async def test_resume_of_never_paused_source_fades_in(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    source.fade_in.value = (0.3, 0.3)
    backend.advance(1.0)
    source.resume()
    [node] = backend.buffer_sources()
    assert node.start_offset == 0.0
    assert node.started_at == pytest.approx(1.0)
    assert source.last_fade == pytest.approx(0.3)
    assert source.play_state.value is PlayState.PLAYING


@pytest.mark.asyncio
async def test_destroy_releases_buffer_and_disconnects(backend, fetcher):
    source = await _loaded_source(backend, fetcher)
    target = backend.create_gain()
    source.connect(target)
    source.play(0.0)

    source.destroy()

    assert source.destroyed
    assert source.buffer is None
    assert source.output.targets == []
    assert backend.buffer_sources()[0].stopped
    source.play(0.0)
    assert len(backend.buffer_sources()) == 1


@pytest.mark.asyncio
async def test_load_completing_after_destroy_is_discarded(backend, fetcher):
    gate = fetcher.hold(DEFAULT_SAMPLE)
    source = LoopSampleSource(backend, fetcher)
    pending = asyncio.ensure_future(source.load(DEFAULT_SAMPLE))
    await asyncio.sleep(0)

    source.destroy()
    gate.set()
    await pending

    assert source.buffer is None
    assert source.url is None
    assert source.is_loaded.value is False


@pytest.mark.asyncio
async def test_document_round_trip(backend, fetcher):
    document = LoopSourceDocument(url=DEFAULT_SAMPLE, loop_start=0.5, fade_in=(2.0, 1.0))
    source = await source_from_document(backend, fetcher, document)
    assert source.fade_in.value == (1.0, 2.0)
    restored = source.to_document()
    assert restored is not None
    assert restored.model_dump(by_alias=True) == {
        "type": "loop",
        "url": DEFAULT_SAMPLE,
        "loopStart": 0.5,
        "fadeIn": (1.0, 2.0),
    }


@pytest.mark.asyncio
async def test_unloaded_source_has_no_document(backend, fetcher):
    assert LoopSampleSource(backend, fetcher).to_document() is None


@pytest.mark.asyncio
async def test_file_asset_fetcher_reads_relative_to_root(tmp_path: Path, backend):
    sample_dir = tmp_path / "audio" / "samples"
    sample_dir.mkdir(parents=True)
    (sample_dir / "drone.wav").write_bytes(make_wav(1.0))
    fetcher = FileAssetFetcher(tmp_path)

    source = LoopSampleSource(backend, fetcher)
    await source.load("/audio/samples/drone.wav")
    assert source.is_loaded.value

    with pytest.raises(AssetLoadError):
        await LoopSampleSource(backend, fetcher).load("/audio/samples/none.wav")
