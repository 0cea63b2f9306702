"""
Joergensen2013 Multi-Resolution Speech Intelligibility Model
============================================================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

This module implements the multi-resolution speech-based envelope power
spectrum model (mr-sEPSM) of Jørgensen, Ewert & Dau (2013). From a noisy speech
mixture and the noise alone, the model computes the overall signal-to-noise
envelope power ratio (SNRenv) and, with the parameters of a speech material,
the predicted percentage of correctly understood words.

The implementation is ported from the MATLAB Auditory Modeling Toolbox (AMT)
``joergensen2013`` function.

References
----------
.. [1] S. Jørgensen, S. D. Ewert, and T. Dau, "A multi-resolution envelope-power
       based model for speech intelligibility," *J. Acoust. Soc. Am.*, vol. 134,
       no. 1, pp. 436-446, 2013.

.. [2] S. Jørgensen and T. Dau, "Predicting speech intelligibility based on the
       signal-to-noise envelope power ratio after modulation-frequency selective
       processing," *J. Acoust. Soc. Am.*, vol. 130, no. 3, pp. 1475-1487, 2011.

.. [3] P. Majdak, C. Hollomey, and R. Baumgartner, "AMT 1.x: A toolbox for
       reproducible research in auditory modeling," *Acta Acust.*, vol. 6,
       p. 19, 2022.
"""

import logging
import warnings
from typing import Any, Dict, Optional, Sequence

import torch
import torch.nn as nn

from torch_epsm.common.filters import resample_ratio, torch_resample_poly
from torch_epsm.common.filterbanks import GammatoneFIRFilterbank, HearingThresholdSelector
from torch_epsm.common.envelope import HilbertEnvelope
from torch_epsm.common.modulation import EPSMModulationFilterbank
from torch_epsm.common.snrenv import MultiResolutionEnvelopePower, SegmentSNRenv, SNRenvIntegration
from torch_epsm.common.decision import IdealObserver

logger = logging.getLogger(__name__)

# Internal sampling rate of the model
JOERGENSEN2013_FS = 22050

# Gammatone (audio) center frequencies in Hz
JOERGENSEN2013_FC = [63, 80, 100, 125, 160, 200, 250, 315, 400, 500, 630,
                     800, 1000, 1250, 1600, 2000, 2500, 3150, 4000, 5000, 6300, 8000]

# Modulation center frequencies in Hz (the first one is the low-pass cutoff)
JOERGENSEN2013_MFC = [1, 2, 4, 8, 16, 32, 64, 128, 256]

# Diffuse-field hearing threshold in quiet, ISO 389-7:2005, dB SPL
JOERGENSEN2013_HEARING_THRESHOLD = [37.5, 31.5, 26.5, 22.1, 17.9, 14.4, 11.4, 8.4, 5.8, 3.8, 2.1,
                                    1.0, 0.8, 1.9, 0.5, -1.5, -3.1, -4.0, -3.8, -1.8, 2.5, 6.8]

# Usable modulation channels per audio band (center frequency below fc/4)
JOERGENSEN2013_NUM_MOD_FILTERS = [5, 5, 5, 6, 6, 6, 7, 7, 7, 8, 8,
                                  8, 9, 9, 9, 9, 9, 9, 9, 9, 9, 9]


class Joergensen2013(nn.Module):
    r"""
    Jørgensen, Ewert & Dau (2013) multi-resolution sEPSM.

    Algorithm Overview
    ------------------
    Mixture :math:`x` and noise :math:`y` are resampled to 22050 Hz and
    processed identically:

    **Stage 1: Gammatone filterbank** (22 channels, 63 Hz - 8 kHz)

    .. math::
        x_p(t) = 2\,\text{Re}\{(g_p * x)(t)\}

    **Stage 2: Band selection.** Bands whose 1/3-octave level of the mixture
    does not exceed the ISO 389-7 diffuse-field threshold are discarded.

    **Stage 3: Envelope.** Hilbert magnitude, 150 Hz 1st-order low-pass,
    decimation to 2205 Hz.

    **Stage 4: Modulation filterbank.** 1 Hz low-pass and band-pass filters
    (Q = 1) at 2 - 256 Hz.

    **Stage 5: Multi-resolution envelope power.** Channel :math:`n` is cut into
    segments of :math:`1/f_{c,n}` seconds; each segment's AC power is
    normalized by the DC power of the envelope.

    **Stage 6: SNRenv.** Per segment

    .. math::
        \text{SNR}_{env} = \frac{P_{env,S+N} - P_{env,N}}{P_{env,N}}

    averaged per channel and combined by root-sum-of-squares, first across
    modulation channels (:math:`f_{c,n} < f_{c,p}/4` only), then across
    audio channels.

    **Stage 7 (optional): Ideal observer** mapping SNRenv to percent correct.

    Parameters
    ----------
    fs : float
        Sampling rate of the inputs in Hz. Inputs at other rates than
        22050 Hz are resampled.

    io_params : sequence of float, optional
        Ideal observer parameters ``[k, q, m, sigma_s]``. If None (default), only
        SNRenv is computed.

    return_stages : bool, optional
        If True, also return a dict of intermediate results. Default: False.

    dtype : torch.dtype, optional
        Data type of all computations. Default: torch.float64.

    filterbank_kwargs : dict, optional
        Overrides for :class:`GammatoneFIRFilterbank` (e.g. ``n``, ``betamul``).

    envelope_kwargs : dict, optional
        Overrides for :class:`HilbertEnvelope` (e.g. ``cutoff``, ``decimation``).

    modulation_kwargs : dict, optional
        Overrides for :class:`EPSMModulationFilterbank` (e.g. ``q``, ``lp_order``).

    snrenv_kwargs : dict, optional
        Overrides for :class:`SegmentSNRenv` (``floor``).

    Attributes
    ----------
    fc : torch.Tensor
        Audio center frequencies, shape (22,).

    mfc : torch.Tensor
        Modulation center frequencies, shape (9,).

    ideal_observer : IdealObserver or None
        Decision stage, built only when ``io_params`` is given.

    Input Shape
    -----------
    x, y : torch.Tensor
        Mixture and noise, both :math:`(B, T)` or both :math:`(T,)`.

    Output Shape
    ------------
    dict
        ``'SNRenv'``: :math:`(B,)` (scalar for 1-D input) and, with
        ``io_params``, ``'P_correct'`` of the same shape.

    When ``return_stages=True`` a second dict holds (all batched):

    - ``'band_level_db'``, ``'band_mask'``: :math:`(B, F)`
    - ``'envelope_mix'``, ``'envelope_noise'``: :math:`(B, F, T_{env})`
    - ``'power_mix'``, ``'power_noise'``, ``'snrenv_segments'``: :math:`(B, F, M, S_{max})`
    - ``'snrenv_mod'``: :math:`(B, F, M)`
    - ``'snrenv_band'``: :math:`(B, F)`

    Examples
    --------
    >>> import torch
    >>> from torch_epsm.models import Joergensen2013
    >>>
    >>> model = Joergensen2013(fs=22050, io_params=[1.0, 0.5, 8000, 0.6])
    >>> noise = 1000 * torch.randn(22050, dtype=torch.float64)
    >>> t = torch.arange(22050, dtype=torch.float64) / 22050
    >>> speech = 1000 * (1 + torch.sin(2 * torch.pi * 4 * t)) * torch.sin(2 * torch.pi * 1000 * t)
    >>> out = model(speech + noise, noise)
    >>> sorted(out.keys())
    ['P_correct', 'SNRenv']

    Notes
    -----
    Signals are interpreted as calibrated sound pressure: an RMS of 1
    corresponds to 0 dB SPL, so speech at conversational level has an RMS
    around 1000.

    See Also
    --------
    GammatoneFIRFilterbank : Stage 1
    HearingThresholdSelector : Stage 2
    HilbertEnvelope : Stage 3
    EPSMModulationFilterbank : Stage 4
    MultiResolutionEnvelopePower : Stage 5
    SegmentSNRenv, SNRenvIntegration : Stage 6
    IdealObserver : Stage 7
    """

    def __init__(self,
                 fs: float,
                 io_params: Optional[Sequence[float]] = None,
                 return_stages: bool = False,
                 dtype: torch.dtype = torch.float64,
                 filterbank_kwargs: Dict[str, Any] = None,
                 envelope_kwargs: Dict[str, Any] = None,
                 modulation_kwargs: Dict[str, Any] = None,
                 snrenv_kwargs: Dict[str, Any] = None):
        super().__init__()

        if fs <= 0:
            raise ValueError(f"fs must be positive, got {fs}")

        self.fs = fs
        self.model_fs = JOERGENSEN2013_FS
        self.return_stages = return_stages
        self.dtype = dtype

        filterbank_kwargs = filterbank_kwargs or {}
        envelope_kwargs = envelope_kwargs or {}
        modulation_kwargs = modulation_kwargs or {}
        snrenv_kwargs = snrenv_kwargs or {}

        self._up, self._down = resample_ratio(self.model_fs, fs)

        # Stage 1: Gammatone filterbank (complex FIR, 4th order)
        filterbank_defaults = {'n': 4, 'mode': 'complex'}
        filterbank_params = {**filterbank_defaults, **filterbank_kwargs}
        self.filterbank = GammatoneFIRFilterbank(fc=JOERGENSEN2013_FC,
                                                 fs=self.model_fs,
                                                 dtype=dtype,
                                                 **filterbank_params)
        self.fc = self.filterbank.fc
        self.num_channels = self.filterbank.num_channels

        # Stage 2: Band selection by hearing threshold
        self.threshold = HearingThresholdSelector(fc=JOERGENSEN2013_FC,
                                                  fs=self.model_fs,
                                                  threshold_db=JOERGENSEN2013_HEARING_THRESHOLD,
                                                  dtype=dtype)

        # Stage 3: Envelope (150 Hz low-pass, decimation by 10)
        envelope_defaults = {'cutoff': 150.0, 'decimation': 10, 'order': 1}
        envelope_params = {**envelope_defaults, **envelope_kwargs}
        self.envelope = HilbertEnvelope(fs=self.model_fs, dtype=dtype, **envelope_params)
        self.fs_env = self.envelope.fs_out

        # Stage 4: Modulation filterbank
        modulation_defaults = {'mfc': JOERGENSEN2013_MFC, 'q': 1.0, 'lp_order': 3}
        modulation_params = {**modulation_defaults, **modulation_kwargs}
        self.modulation = EPSMModulationFilterbank(fs=self.fs_env, dtype=dtype, **modulation_params)
        self.mfc = self.modulation.mfc

        # Stages 5-6: Envelope power, SNRenv, integration
        self.envelope_power = MultiResolutionEnvelopePower(fs=self.fs_env, mfc=self.mfc.tolist())
        snrenv_defaults = {'floor': 0.001}
        self.snrenv = SegmentSNRenv(**{**snrenv_defaults, **snrenv_kwargs})
        self.integration = SNRenvIntegration(JOERGENSEN2013_NUM_MOD_FILTERS,
                                             num_mod_channels=self.modulation.num_filters)

        # Stage 7: Ideal observer
        self.ideal_observer = None
        if io_params is not None:
            self.ideal_observer = IdealObserver.from_params(io_params, dtype=dtype)

    def _validate_inputs(self, x: torch.Tensor, y: torch.Tensor):
        if not isinstance(x, torch.Tensor) or not isinstance(y, torch.Tensor):
            raise TypeError(f"x and y must be torch.Tensor, got {type(x).__name__} and {type(y).__name__}")
        if x.shape[-1:] != y.shape[-1:]:
            raise ValueError(f"x and y should have the same length, got {x.shape[-1]} and {y.shape[-1]}")
        if x.shape != y.shape:
            raise ValueError(f"x and y should have the same shape, got {tuple(x.shape)} and {tuple(y.shape)}")
        if x.ndim not in (1, 2):
            raise ValueError(f"Inputs must be 1D (T,) or 2D (B, T), got shape {tuple(x.shape)}")
        if x.shape[-1] < 2:
            raise ValueError(f"Inputs must contain at least 2 samples, got {x.shape[-1]}")

    def forward(self, x: torch.Tensor, y: torch.Tensor) -> Dict[str, torch.Tensor] | tuple:
        """
        Compute SNRenv (and percent correct) for a mixture and its noise.

        Parameters
        ----------
        x : torch.Tensor
            Noisy speech mixture, shape (B, T) or (T,).

        y : torch.Tensor
            Noise alone, same shape as ``x``.

        Returns
        -------
        dict or tuple
            Output dict, or ``(output, stages)`` if ``return_stages=True``.
        """
        self._validate_inputs(x, y)

        squeeze = x.ndim == 1
        if squeeze:
            x, y = x.unsqueeze(0), y.unsqueeze(0)
        B = x.shape[0]

        # Mixture and noise go through the front end as one batch
        z = torch.cat([x, y], dim=0).to(self.dtype)
        if (self._up, self._down) != (1, 1):
            z = torch_resample_poly(z, self._up, self._down)

        # Band selection from the mixture only
        band_level_db, band_mask = self.threshold(z[:B])
        silent = ~band_mask.any(dim=-1)
        if torch.any(silent):
            warnings.warn(f"No frequency band exceeds the hearing threshold for "
                          f"{int(silent.sum())} of {B} input(s); their SNRenv is 0. "
                          f"Inputs are expected in calibrated units (RMS 1 = 0 dB SPL).")
        logger.debug("Bands above threshold per item: %s", band_mask.sum(dim=-1).tolist())

        # Stage 1: [2B, T] -> [2B, F, T], excluded bands zeroed
        bands = 2 * self.filterbank(z).real
        bands = bands * torch.cat([band_mask, band_mask], dim=0).unsqueeze(-1)

        # Stage 3: [2B, F, T] -> [2B, F, T_env]
        env = self.envelope(bands)

        # Stage 4: [2B, F, T_env] -> [2B, F, M, N]
        mod = self.modulation(env)

        # Stage 5: [2B, F, M, N] -> [2B, F, M, S_max]
        power = self.envelope_power(mod, env)
        power_mix, power_noise = power[:B], power[B:]

        # Stage 6: SNRenv per segment, per channel, total
        snrenv_segments, snrenv_mod = self.snrenv(power_mix, power_noise)
        snrenv_band, snrenv = self.integration(snrenv_mod, band_mask)

        output = {'SNRenv': snrenv}
        if self.ideal_observer is not None:
            output['P_correct'] = self.ideal_observer(snrenv)

        if squeeze:
            output = {key: value.squeeze(0) for key, value in output.items()}

        if self.return_stages:
            stages = {'band_level_db': band_level_db,
                      'band_mask': band_mask,
                      'envelope_mix': env[:B],
                      'envelope_noise': env[B:],
                      'power_mix': power_mix,
                      'power_noise': power_noise,
                      'snrenv_segments': snrenv_segments,
                      'snrenv_mod': snrenv_mod,
                      'snrenv_band': snrenv_band}
            return output, stages
        return output

    def extra_repr(self) -> str:
        return (f"fs={self.fs}, model_fs={self.model_fs}, num_channels={self.num_channels}, "
                f"num_mod_channels={self.modulation.num_filters}, "
                f"ideal_observer={self.ideal_observer is not None}")


def joergensen2013(x, y, fs: float, io_params: Optional[Sequence[float]] = None) -> Dict[str, torch.Tensor]:
    """
    Functional form of :class:`Joergensen2013`.

    Parameters
    ----------
    x : array_like or torch.Tensor
        Noisy speech mixture, shape (T,) or (B, T).

    y : array_like or torch.Tensor
        Noise alone, same shape as ``x``.

    fs : float
        Sampling rate in Hz.

    io_params : sequence of float, optional
        Ideal observer parameters ``[k, q, m, sigma_s]``.

    Returns
    -------
    dict
        ``'SNRenv'`` and, if ``io_params`` is given, ``'P_correct'``.

    Examples
    --------
    >>> import numpy as np
    >>> out = joergensen2013(np.random.randn(22050), np.random.randn(22050), fs=22050)
    >>> float(out['SNRenv']) >= 0
    True
    """
    x = torch.as_tensor(x, dtype=torch.float64)
    y = torch.as_tensor(y, dtype=torch.float64)
    if x.numel() != y.numel():
        raise ValueError(f"x and y should have the same length, got {x.numel()} and {y.numel()}")

    model = Joergensen2013(fs=fs, io_params=io_params).to(x.device)
    with torch.no_grad():
        return model(x, y)
