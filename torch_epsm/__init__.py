"""
torch_epsm: PyTorch Envelope Power Spectrum Models
==================================================

A differentiable PyTorch implementation of the speech-based envelope power
spectrum models of the Auditory Modeling Toolbox (AMT). The package predicts
speech intelligibility from a noisy speech mixture and the noise alone, via the
signal-to-noise envelope power ratio (SNRenv) and an ideal observer.

**Key Features:**
    - Hardware-accelerated with PyTorch (CUDA, MPS, CPU)
    - Batched processing of many conditions in one call
    - Modular architecture with reusable components
    - Alignment with the AMT MATLAB/Octave ``joergensen2013`` implementation

**Quick Start:**

    >>> import torch
    >>> import torch_epsm
    >>>
    >>> model = torch_epsm.Joergensen2013(fs=22050, io_params=[1.0, 0.5, 8000, 0.6])
    >>> noise = 1000 * torch.randn(22050, dtype=torch.float64)
    >>> speech = 1000 * torch.randn(22050, dtype=torch.float64)
    >>> out = model(speech + noise, noise)
    >>> out['SNRenv'], out['P_correct']

**Package Structure:**

    torch_epsm/
    ├── models/             # Complete end-to-end models
    │   └── Joergensen2013          - Multi-resolution sEPSM
    │
    └── common/             # Reusable building blocks
        ├── filterbanks.py          - Gammatone FIR filterbank, 1/3-octave analysis
        ├── envelope.py             - Hilbert envelope extraction
        ├── modulation.py           - Modulation filterbank
        ├── snrenv.py               - Envelope power, SNRenv, integration
        ├── decision.py             - Ideal observer
        └── filters.py              - Generic signal processing utilities

**Author:**
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

**License:**
    GNU General Public License v3.0 or later (GPLv3+)

**Citations:**
    If you use this package in your research, please cite:

    - Jørgensen, S., Ewert, S. D., & Dau, T. (2013). "A multi-resolution
      envelope-power based model for speech intelligibility." J. Acoust. Soc.
      Am., 134(1), 436-446.
    - Majdak, P., Hollomey, C., & Baumgartner, R. (2022). "AMT 1.x: A toolbox
      for reproducible research in auditory modeling." Acta Acustica, 6, 19.
"""

# ============================================================================
# Package Metadata
# ============================================================================

__version__ = "0.1.0"
__author__ = "Stefano Giacomelli"
__email__ = "stefano.giacomelli@graduate.univaq.it"
__license__ = "GPL-3.0-or-later"
__description__ = "PyTorch Envelope Power Spectrum Models - Speech intelligibility prediction (mr-sEPSM)"

# ============================================================================
# Public API - End-to-End Models
# ============================================================================

from torch_epsm.models.joergensen2013 import Joergensen2013, joergensen2013

# ============================================================================
# Public API - Common Building Blocks
# ============================================================================

# --- Filterbanks & Frequency Processing ---
from torch_epsm.common.filterbanks import (
    audfiltbw,                          # Auditory filter bandwidth
    GammatoneFIRFilterbank,             # Complex FIR gammatone filterbank
    ThirdOctaveAnalysis,                # 1/3-octave RMS analysis
    HearingThresholdSelector,           # Band selection by threshold in quiet
)

# --- Envelope ---
from torch_epsm.common.envelope import (
    HilbertEnvelope,                    # Hilbert envelope + low-pass + decimation
)

# --- Modulation Analysis ---
from torch_epsm.common.modulation import (
    EPSMModulationFilterbank,           # 1 Hz low-pass + Q=1 band-pass filters
)

# --- Envelope Power & SNRenv ---
from torch_epsm.common.snrenv import (
    segment_bounds,                     # Multi-resolution segmentation
    MultiResolutionEnvelopePower,       # Segmental envelope power
    SegmentSNRenv,                      # Per-segment SNRenv
    SNRenvIntegration,                  # Combination across channels
)

# --- Decision ---
from torch_epsm.common.decision import (
    IdealObserver,                      # Green & Birdsall (1964) observer
)

# --- Generic Filters & Signal Processing ---
from torch_epsm.common.filters import (
    torch_hilbert,                      # Analytic signal via Hilbert transform
    torch_resample_poly,                # Polyphase resampling
    torch_fftfilt,                      # FFT FIR filtering
    resample_ratio,                     # Rational resampling factors
    ButterworthFilter,                  # Butterworth IIR filter
    apply_sos_pytorch,                  # Apply SOS cascade
)

# ============================================================================
# Package-Level Exports
# ============================================================================

__all__ = [
    # Models
    "Joergensen2013",
    "joergensen2013",

    # Filterbanks
    "audfiltbw",
    "GammatoneFIRFilterbank",
    "ThirdOctaveAnalysis",
    "HearingThresholdSelector",

    # Envelope & modulation
    "HilbertEnvelope",
    "EPSMModulationFilterbank",

    # SNRenv
    "segment_bounds",
    "MultiResolutionEnvelopePower",
    "SegmentSNRenv",
    "SNRenvIntegration",

    # Decision
    "IdealObserver",

    # Signal processing utilities
    "torch_hilbert",
    "torch_resample_poly",
    "torch_fftfilt",
    "resample_ratio",
    "ButterworthFilter",
    "apply_sos_pytorch",
]
