import numpy as np
import pytest
import soundfile as sf

from audio_utils import audio_duration, block_level_db, load_audio_file, normalize_level, resample


def test_block_level_db():
    assert block_level_db(np.zeros(0)) == -160.0
    assert block_level_db(np.ones(256)) == pytest.approx(0.0, abs=1e-6)
    assert block_level_db(np.full(256, 0.1)) == pytest.approx(-20.0, abs=1e-4)


@pytest.mark.parametrize("db,level", [(-80.0, 0.0), (-50.0, 0.0), (-25.0, 0.5), (0.0, 1.0), (6.0, 1.0)])
def test_normalize_level(db, level):
    assert normalize_level(db) == pytest.approx(level)


def test_resample_length():
    data = np.ones(1600, dtype=np.float32)
    assert resample(data, 16000, 16000) is not None
    assert resample(data, 8000, 16000).size == 3200
    assert resample(np.zeros(0, dtype=np.float32), 8000, 16000).size == 0


def test_load_audio_file_mixes_to_mono(tmp_path):
    path = str(tmp_path / "stereo.wav")
    stereo = np.stack([np.full(800, 0.5), np.full(800, -0.25)], axis=1).astype(np.float32)
    sf.write(path, stereo, 8000)
    data, sr = load_audio_file(path)
    assert sr == 8000
    assert data.ndim == 1
    assert data[0] == pytest.approx(0.125, abs=1e-3)
    assert audio_duration(path) == pytest.approx(0.1)


def test_unsupported_file_raises(tmp_path):
    path = tmp_path / "broken.wav"
    path.write_bytes(b"not audio")
    with pytest.raises((RuntimeError, sf.SoundFileError)):
        load_audio_file(str(path))
