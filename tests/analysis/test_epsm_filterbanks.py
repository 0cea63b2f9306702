"""
sEPSM Filterbanks - Test Suite

Contents:
1. test_gammatone_fir_response: magnitude responses of the 22 audio channels
2. test_modulation_transfer_functions: the 9 modulation filters on the envelope rate

Structure:
- Gammatone FIR filters at the 1/3-octave centers 63 Hz - 8 kHz, fs = 22050 Hz
- Modulation filters: 1 Hz 3rd-order low-pass and Q = 1 band-passes 2 - 256 Hz at 2205 Hz

Figures generated:
- epsm_gammatone_response.png: audio channel magnitude responses (dB)
- epsm_modulation_response.png: modulation transfer function magnitudes (dB)
"""

import numpy as np
import matplotlib.pyplot as plt
import torch
from pathlib import Path

from torch_epsm.common.filterbanks import GammatoneFIRFilterbank
from torch_epsm.common.modulation import EPSMModulationFilterbank
from torch_epsm.models.joergensen2013 import JOERGENSEN2013_FC, JOERGENSEN2013_MFC


def test_gammatone_fir_response():
    """Each channel peaks at its center frequency with unit gain."""
    TEST_FIGURES_DIR = Path(__file__).parent.parent.parent / 'test_figures'
    TEST_FIGURES_DIR.mkdir(exist_ok=True)

    fs = 22050
    print("=" * 80)
    print("GAMMATONE FIR FILTERBANK TEST")
    print("=" * 80)

    filterbank = GammatoneFIRFilterbank(fc=JOERGENSEN2013_FC, fs=fs, dtype=torch.float64)
    print(f"\nFilterbank: {filterbank}")
    print(f"  IR length: {filterbank.ir_length} samples ({filterbank.ir_length / fs * 1000:.1f} ms)")

    n_fft = 1 << int(np.ceil(np.log2(filterbank.ir_length)) + 1)
    H = torch.fft.fft(filterbank.impulse_responses, n=n_fft).numpy()
    freqs = np.fft.fftfreq(n_fft, 1 / fs)
    pos = slice(1, n_fft // 2)
    mag_db = 20 * np.log10(np.abs(H[:, pos]) + 1e-12)

    print(f"\n{'fc [Hz]':>10} {'peak [Hz]':>10} {'gain [dB]':>10}")
    for k, fc in enumerate(JOERGENSEN2013_FC):
        peak = freqs[pos][np.argmax(mag_db[k])]
        print(f"{fc:>10} {peak:>10.1f} {mag_db[k].max():>10.2f}")
        bin_width = fs / n_fft
        assert abs(peak - fc) < max(0.05 * fc, 2 * bin_width)
        assert abs(mag_db[k].max()) < 0.5

    fig, ax = plt.subplots(figsize=(12, 6))
    for k in range(filterbank.num_channels):
        ax.semilogx(freqs[pos], mag_db[k], linewidth=0.8)
    ax.set_xlim([30, fs / 2])
    ax.set_ylim([-60, 3])
    ax.set_xlabel('Frequency [Hz]')
    ax.set_ylabel('Magnitude [dB]')
    ax.set_title('Gammatone FIR filterbank (4th order, 1 ERB)')
    ax.grid(True, which='both', alpha=0.3)

    plt.tight_layout()
    output_path = TEST_FIGURES_DIR / 'epsm_gammatone_response.png'
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"\nFigure saved: {output_path}")


def test_modulation_transfer_functions():
    """Band-pass filters reach 0 dB at their center frequency."""
    TEST_FIGURES_DIR = Path(__file__).parent.parent.parent / 'test_figures'
    TEST_FIGURES_DIR.mkdir(exist_ok=True)

    fs_env = 2205
    n = 22051

    print("=" * 80)
    print("sEPSM MODULATION FILTERBANK TEST")
    print("=" * 80)

    mfb = EPSMModulationFilterbank(fs=fs_env, mfc=JOERGENSEN2013_MFC, dtype=torch.float64)
    print(f"\nFilterbank: {mfb}")

    f = mfb.frequency_axis(n).numpy()
    H = mfb.transfer_functions(n).numpy()
    pos = slice(1, n // 2 + 1)
    mag_db = 20 * np.log10(np.abs(H[:, pos]) + 1e-12)

    for m, fc in enumerate(JOERGENSEN2013_MFC[1:], start=1):
        peak = f[pos][np.argmax(mag_db[m])]
        print(f"  {fc:>4} Hz band-pass: peak at {peak:.1f} Hz, {mag_db[m].max():.3f} dB")
        assert abs(peak - fc) < 0.2
        assert abs(mag_db[m].max()) < 1e-6

    fig, ax = plt.subplots(figsize=(12, 6))
    for m, fc in enumerate(JOERGENSEN2013_MFC):
        label = f'LP {fc} Hz' if m == 0 else f'{fc} Hz'
        ax.semilogx(f[pos], mag_db[m], label=label)
    ax.set_xlim([0.2, fs_env / 2])
    ax.set_ylim([-40, 3])
    ax.set_xlabel('Modulation frequency [Hz]')
    ax.set_ylabel('Magnitude [dB]')
    ax.set_title('sEPSM modulation filterbank')
    ax.legend(ncol=3)
    ax.grid(True, which='both', alpha=0.3)

    plt.tight_layout()
    output_path = TEST_FIGURES_DIR / 'epsm_modulation_response.png'
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    print(f"\nFigure saved: {output_path}")


if __name__ == '__main__':
    test_gammatone_fir_response()
    test_modulation_transfer_functions()
