"""Device Compatibility Test Suite for models

This test suite verifies that the end-to-end speech intelligibility model works correctly
across all available devices (CPU, CUDA, MPS).

Contents:
- Joergensen2013 (nn.Module) and joergensen2013 (functional form)

Test structure:
- Output keys and shapes, single and batch input, intermediate stages
- Known results: identical mixture and noise, bands below threshold
- Monotonic growth of SNRenv and percent correct with the speech-to-noise ratio
- Input and ideal observer validation
- Device transfer (CPU, CUDA, MPS)

Usage:
    # Standalone execution (tests all available devices)
    python test_device_models.py

    # pytest execution
    pytest test_device_models.py -v
"""

import math

import numpy as np
import pytest
import torch
from typing import List

from torch_epsm.models import Joergensen2013, joergensen2013
from torch_epsm.models.joergensen2013 import JOERGENSEN2013_NUM_MOD_FILTERS


# ================================================================================================
# Device Detection
# ================================================================================================

def get_available_devices() -> List[str]:
    """Detect all available PyTorch devices on the system."""
    devices = ['cpu']

    if torch.cuda.is_available():
        devices.append('cuda')

    if torch.backends.mps.is_available():
        devices.append('mps')

    return devices


def get_dtype(device: str) -> torch.dtype:
    """float64 where supported (MPS has no float64)."""
    return torch.float32 if device == 'mps' else torch.float64


# ================================================================================================
# Test Data Factories
# ================================================================================================

FS = 22050
IO_PARAMS = [1.0, 0.5, 8000, 0.6]


def create_noise(n_samples: int, seed: int, level_db: float = 65.0) -> torch.Tensor:
    """Gaussian noise at ``level_db`` dB SPL (RMS 1 = 0 dB)."""
    gen = torch.Generator().manual_seed(seed)
    noise = torch.randn(n_samples, generator=gen, dtype=torch.float64)
    return noise / noise.pow(2).mean().sqrt() * 10 ** (level_db / 20)


def create_speech_surrogate(n_samples: int, seed: int, level_db: float = 65.0, fs: int = FS) -> torch.Tensor:
    """Noise carrier with a 4 Hz, fully modulated envelope (syllabic rate)."""
    t = torch.arange(n_samples, dtype=torch.float64) / fs
    carrier = create_noise(n_samples, seed, level_db=0.0)
    x = (1 + torch.sin(2 * math.pi * 4 * t)) * carrier
    return x / x.pow(2).mean().sqrt() * 10 ** (level_db / 20)


# ================================================================================================
# Test: Joergensen2013
# ================================================================================================

@pytest.mark.parametrize("device", get_available_devices())
def test_joergensen2013_device(device):
    """Output keys, shapes and device for single and batch input."""
    print(f"\n{'='*80}")
    print(f"TEST: Joergensen2013 - Device: {device.upper()}")
    print(f"{'='*80}\n")

    dtype = get_dtype(device)
    model = Joergensen2013(fs=FS, io_params=IO_PARAMS, dtype=dtype).to(device)
    print(f"✓ Initialization successful")
    print(f"  Module: {model}")

    noise = create_noise(FS, seed=0)
    speech = create_speech_surrogate(FS, seed=1)

    # Single
    out = model((speech + noise).to(device), noise.to(device))
    assert set(out.keys()) == {'SNRenv', 'P_correct'}
    assert out['SNRenv'].shape == ()
    assert out['SNRenv'].device.type == device
    assert out['SNRenv'].item() > 0
    assert 0 <= out['P_correct'].item() <= 100
    print(f"✓ Forward single: SNRenv={out['SNRenv'].item():.4f}, P_correct={out['P_correct'].item():.2f} %")

    # Batch
    x = torch.stack([speech + noise, 0.5 * speech + noise]).to(device)
    y = torch.stack([noise, noise]).to(device)
    out_b = model(x, y)
    assert out_b['SNRenv'].shape == (2,)
    assert out_b['P_correct'].shape == (2,)
    rtol = 1e-3 if device == 'mps' else 1e-6
    assert torch.allclose(out_b['SNRenv'][0], out['SNRenv'], rtol=rtol)
    print(f"✓ Forward batch: SNRenv={out_b['SNRenv'].tolist()}")


def test_joergensen2013_stages():
    """Intermediate results have the documented shapes."""
    model = Joergensen2013(fs=FS, return_stages=True)
    noise = create_noise(FS, seed=2)
    speech = create_speech_surrogate(FS, seed=3)

    out, stages = model(speech + noise, noise)
    assert set(out.keys()) == {'SNRenv'}
    assert set(stages.keys()) == {'band_level_db', 'band_mask', 'envelope_mix', 'envelope_noise',
                                  'power_mix', 'power_noise', 'snrenv_segments', 'snrenv_mod',
                                  'snrenv_band'}

    # 22050 samples -> 2205 envelope samples (odd, kept) -> 276 segments at 256 Hz
    assert stages['band_level_db'].shape == (1, 22)
    assert stages['band_mask'].dtype == torch.bool
    assert stages['envelope_mix'].shape == (1, 22, 2205)
    assert stages['power_mix'].shape == (1, 22, 9, 276)
    assert stages['snrenv_segments'].shape == (1, 22, 9, 276)
    assert stages['snrenv_mod'].shape == (1, 22, 9)
    assert stages['snrenv_band'].shape == (1, 22)

    # Excluded bands carry nothing
    excluded = ~stages['band_mask'][0]
    assert torch.all(stages['envelope_mix'][0, excluded] == 0)
    assert torch.all(stages['snrenv_band'][0, excluded] == 0)

    # Every level is non-negative and the total is the RSS of the bands
    assert torch.all(stages['snrenv_mod'] >= 0)
    assert torch.isclose(out['SNRenv'], stages['snrenv_band'][0].pow(2).sum().sqrt())


def test_joergensen2013_identical_inputs():
    """Mixture == noise puts every active segment at the 0.001 floor."""
    model = Joergensen2013(fs=FS, return_stages=True)
    noise = create_noise(FS, seed=4)

    out, stages = model(noise, noise.clone())

    mask = stages['band_mask'][0]
    assert mask.any()
    n_valid = sum(c for c, keep in zip(JOERGENSEN2013_NUM_MOD_FILTERS, mask.tolist()) if keep)
    expected = 0.001 * math.sqrt(n_valid)
    assert abs(out['SNRenv'].item() - expected) < 1e-9
    print(f"✓ Identical inputs: SNRenv={out['SNRenv'].item():.6f} (expected {expected:.6f})")


def test_joergensen2013_monotonic_snr():
    """SNRenv and percent correct grow with the speech-to-noise ratio."""
    model = Joergensen2013(fs=FS, io_params=IO_PARAMS)
    noise = create_noise(FS, seed=5)
    speech = create_speech_surrogate(FS, seed=6)

    snrs_db = [-15.0, 0.0, 15.0]
    x = torch.stack([speech * 10 ** (snr / 20) + noise for snr in snrs_db])
    y = noise.expand(len(snrs_db), -1).clone()

    out = model(x, y)
    snrenv = out['SNRenv']
    p = out['P_correct']
    print(f"  SNR {snrs_db} dB -> SNRenv {snrenv.tolist()}, P {p.tolist()}")

    assert torch.all(snrenv[1:] > snrenv[:-1])
    assert torch.all(p[1:] >= p[:-1])


def test_joergensen2013_below_threshold():
    """Inaudible input: warning, SNRenv 0."""
    model = Joergensen2013(fs=FS, io_params=IO_PARAMS)
    noise = create_noise(FS, seed=7, level_db=-20.0)

    with pytest.warns(UserWarning, match="hearing threshold"):
        out = model(noise + 0.5 * noise, noise)

    assert out['SNRenv'].item() == 0
    assert 0 <= out['P_correct'].item() <= 100


def test_joergensen2013_tone_in_noise_example():
    """1 s, 1 kHz tone (amplitude 1) in noise (0.1): no band above threshold."""
    t = torch.arange(FS, dtype=torch.float64) / FS
    tone = torch.sin(2 * math.pi * 1000 * t)
    noise = 0.1 * create_noise(FS, seed=8, level_db=0.0)

    with pytest.warns(UserWarning):
        out = joergensen2013(tone + noise, noise, FS, io_params=IO_PARAMS)

    assert out['SNRenv'].item() >= 0
    assert 0 <= out['P_correct'].item() <= 100


def test_joergensen2013_resampling():
    """Inputs at 44.1 kHz are brought to the model rate."""
    fs = 44100
    model = Joergensen2013(fs=fs, return_stages=True)
    assert (model._up, model._down) == (1, 2)

    noise = create_noise(fs, seed=9)
    speech = create_speech_surrogate(fs, seed=10, fs=fs)
    out, stages = model(speech + noise, noise)

    assert stages['envelope_mix'].shape[-1] == 2205
    assert torch.isfinite(out['SNRenv'])
    assert out['SNRenv'].item() > 0


def test_joergensen2013_input_validation():
    """Length/shape mismatches and malformed configurations."""
    model = Joergensen2013(fs=FS)
    noise = create_noise(1000, seed=11)

    with pytest.raises(ValueError, match="same length"):
        model(noise, noise[:-1])
    with pytest.raises(ValueError):
        model(noise.view(1, -1), noise)
    with pytest.raises(ValueError):
        model(noise.view(1, 1, -1), noise.view(1, 1, -1))
    with pytest.raises(TypeError):
        model(noise.numpy(), noise)

    with pytest.raises(ValueError):
        Joergensen2013(fs=0)
    with pytest.raises(ValueError):
        Joergensen2013(fs=FS, io_params=[1.0, 0.5, 8000])
    with pytest.raises(ValueError):
        Joergensen2013(fs=FS, io_params=[1.0, 0.5, 1, 0.6])
    with pytest.raises(TypeError):
        Joergensen2013(fs=FS, io_params="k q m s")


def test_joergensen2013_custom_kwargs():
    """Sub-stage overrides are merged over the defaults."""
    model = Joergensen2013(fs=FS,
                           envelope_kwargs={'cutoff': 100.0},
                           modulation_kwargs={'q': 2.0},
                           snrenv_kwargs={'floor': 0.01})
    assert model.envelope.cutoff == 100.0
    assert model.envelope.decimation == 10
    assert model.modulation.q == 2.0
    assert model.snrenv.floor == 0.01

    noise = create_noise(FS, seed=12)
    out = model(noise, noise)
    assert out['SNRenv'].item() > 0


def test_joergensen2013_functional():
    """AMT-style call with array-likes."""
    noise = create_noise(FS, seed=13).numpy()
    speech = create_speech_surrogate(FS, seed=14).numpy()

    out = joergensen2013(speech + noise, noise, FS)
    assert set(out.keys()) == {'SNRenv'}
    assert out['SNRenv'].item() > 0

    out_io = joergensen2013((speech + noise).tolist(), noise.tolist(), FS, io_params=np.array(IO_PARAMS))
    assert torch.isclose(out_io['SNRenv'], out['SNRenv'])
    assert 'P_correct' in out_io

    with pytest.raises(ValueError, match="same length"):
        joergensen2013(noise, noise[:-10], FS)


if __name__ == "__main__":
    import sys

    sys.exit(pytest.main([__file__, "-v", "-s"]))
