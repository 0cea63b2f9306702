"""
Envelope Power & SNRenv
=======================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Back end of the multi-resolution envelope power spectrum model (mr-sEPSM):

- :class:`MultiResolutionEnvelopePower`: AC envelope power of each modulation
  channel in segments whose duration is the inverse of the modulation center
  frequency, normalized by the DC power of the envelope.
- :class:`SegmentSNRenv`: signal-to-noise envelope power ratio per segment,
  with the noise power capped by the mixture power and a -30 dB floor, then
  averaged over the segments carrying mixture power.
- :class:`SNRenvIntegration`: root-sum-of-squares combination across modulation
  channels (restricted to those below a quarter of the audio center frequency)
  and across audio channels.

Segment powers of all modulation channels share one zero-padded tensor of
shape (B, F, M, S_max); entries past a channel's own segment count stay 0 and
are ignored downstream, the same way segments with no mixture power are.

References
----------
.. [1] S. Jørgensen, S. D. Ewert, and T. Dau, "A multi-resolution envelope-power
       based model for speech intelligibility," *J. Acoust. Soc. Am.*, vol. 134,
       no. 1, pp. 436-446, 2013.
"""

import logging
import math
from typing import List, Optional, Sequence, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

logger = logging.getLogger(__name__)

# ------------------------------------------------- Utilities ------------------------------------------------

def segment_bounds(n_samples: int, win_length: int) -> List[Tuple[int, int]]:
    """
    Partition ``[0, n_samples)`` into consecutive non-overlapping segments.

    All segments have ``win_length`` samples except the last one, which takes
    the remainder. There are ``n_samples // win_length + 1`` segments, one
    less when ``n_samples`` is an exact multiple of ``win_length`` (no empty
    trailing segment). A signal shorter than the window is one partial
    segment.

    Parameters
    ----------
    n_samples : int
        Signal length N (>= 1).

    win_length : int
        Window length W (>= 1).

    Returns
    -------
    list of tuple of int
        0-based ``(start, stop)`` pairs, stop exclusive.

    Examples
    --------
    >>> segment_bounds(10, 4)
    [(0, 4), (4, 8), (8, 10)]
    >>> segment_bounds(8, 4)
    [(0, 4), (4, 8)]
    """
    if win_length < 1:
        raise ValueError(f"win_length must be at least 1 sample, got {win_length}")
    if n_samples < 1:
        raise ValueError(f"n_samples must be at least 1, got {n_samples}")

    n_segments = n_samples // win_length + 1
    if n_samples % win_length == 0:
        n_segments -= 1

    bounds = [(i * win_length, (i + 1) * win_length) for i in range(n_segments - 1)]
    bounds.append(((n_segments - 1) * win_length, n_samples))
    return bounds

# ---------------------------------------------- Envelope power ----------------------------------------------

class MultiResolutionEnvelopePower(nn.Module):
    r"""
    Segmental envelope power of modulation channel outputs.

    Modulation channel :math:`m` is cut into segments of
    :math:`W_m = \lfloor f_s / f_{c,m} \rfloor` samples (see
    :func:`segment_bounds`). For segment :math:`s` of length :math:`L_s`:

    .. math::
        P_{m,s} = \frac{\frac{1}{L_s}\sum_{t \in s}\left(x_m(t) - \bar{x}_{m,s}\right)^2}
                       {\overline{e}^{\,2} / 2}

    where :math:`\overline{e}` is the mean of the whole (decimated) envelope the
    modulation channels were computed from. Undefined values (a silent
    envelope) are replaced by 0.

    Parameters
    ----------
    fs : float
        Sampling rate of the modulation channel outputs in Hz.

    mfc : sequence of float
        Modulation center frequencies in Hz, one per channel.

    Attributes
    ----------
    window_lengths : list of int
        Segment length :math:`W_m` of each modulation channel.

    Shape
    -----
    - Input ``x``: :math:`(B, F, M, N)` modulation channel outputs
    - Input ``envelope``: :math:`(B, F, T)` envelopes (before odd-length trimming)
    - Output: :math:`(B, F, M, S_{max})` with
      :math:`S_{max} = \max_m` ``segment_counts(N)[m]``

    Examples
    --------
    >>> power = MultiResolutionEnvelopePower(fs=2205, mfc=[1, 2, 4, 8, 16, 32, 64, 128, 256])
    >>> power.window_lengths
    [2205, 1102, 551, 275, 137, 68, 34, 17, 8]
    >>> power.segment_counts(2205)
    [1, 3, 5, 9, 17, 33, 65, 130, 276]
    """

    def __init__(self, fs: float, mfc: Sequence[float]):
        super().__init__()
        if fs <= 0:
            raise ValueError(f"fs must be positive, got {fs}")

        self.fs = fs
        self.mfc = [float(f) for f in mfc]
        self.window_lengths = [int(math.floor(fs / f)) for f in self.mfc]

        too_short = [f for f, w in zip(self.mfc, self.window_lengths) if w < 1]
        if too_short:
            raise ValueError(f"Modulation frequencies {too_short} Hz give windows shorter than "
                             f"one sample at fs={fs} Hz")

    def segment_counts(self, n_samples: int) -> List[int]:
        """Number of segments of each modulation channel for a length-``n_samples`` signal."""
        return [len(segment_bounds(n_samples, w)) for w in self.window_lengths]

    def forward(self, x: torch.Tensor, envelope: torch.Tensor) -> torch.Tensor:
        """
        Compute normalized segment envelope powers.

        Parameters
        ----------
        x : torch.Tensor
            Modulation channel outputs, shape (B, F, M, N).

        envelope : torch.Tensor
            Envelopes used for the DC normalization, shape (B, F, T).

        Returns
        -------
        torch.Tensor
            Envelope powers, shape (B, F, M, S_max); 0 past each channel's
            segment count.
        """
        if x.ndim != 4:
            raise ValueError(f"Expected modulation outputs of shape (B, F, M, N), got {tuple(x.shape)}")
        B, n_bands, M, N = x.shape
        if M != len(self.window_lengths):
            raise ValueError(f"Got {M} modulation channels, expected {len(self.window_lengths)}")

        dc_power = envelope.mean(dim=-1) ** 2 / 2

        counts = self.segment_counts(N)
        s_max = max(counts)
        power = x.new_zeros(B, n_bands, M, s_max)

        for m, win in enumerate(self.window_lengths):
            bounds = segment_bounds(N, win)
            n_seg = len(bounds)
            lengths = torch.tensor([stop - start for start, stop in bounds], dtype=x.dtype, device=x.device)

            # (B, F, n_seg, win), zero-padded tail
            seg = F.pad(x[:, :, m, :], (0, n_seg * win - N)).reshape(B, n_bands, n_seg, win)
            valid = torch.arange(win, device=x.device).unsqueeze(0) < lengths.unsqueeze(1)

            seg_mean = seg.sum(dim=-1) / lengths
            dev = (seg - seg_mean.unsqueeze(-1)) * valid
            power[:, :, m, :n_seg] = (dev ** 2).sum(dim=-1) / lengths / dc_power.unsqueeze(-1)

        logger.debug("Envelope power: N=%d, segment counts %s", N, counts)
        return torch.nan_to_num(power, nan=0.0)

    def extra_repr(self) -> str:
        return f"fs={self.fs}, window_lengths={self.window_lengths}"

# --------------------------------------------------- SNRenv -------------------------------------------------

class SegmentSNRenv(nn.Module):
    r"""
    Per-segment SNRenv and its average per modulation channel.

    Given mixture and noise envelope powers of the same segments:

    1. noise power is capped at the mixture power,
       :math:`P_N \leftarrow \min(P_{S+N}, P_N)`;
    2. non-zero powers are floored at ``floor`` (-30 dB); on segments with
       mixture power the noise power is floored as well, so the ratio below is
       always defined;
    3. :math:`\text{SNR}_{env} = \max\left((P_{S+N} - P_N) / P_N, \text{floor}\right)`
       on every segment with non-zero mixture power;
    4. the segment values are averaged over those segments. A channel without
       any such segment gets 0.

    Parameters
    ----------
    floor : float, optional
        Lower limit for envelope powers and SNRenv values. Default: 0.001.

    Shape
    -----
    - Inputs: :math:`(..., S)` mixture and noise powers
    - Outputs: ``(snrenv_segments, snrenv)`` of shapes :math:`(..., S)` and
      :math:`(...)`; excluded segments are 0 in ``snrenv_segments``
    """

    def __init__(self, floor: float = 0.001):
        super().__init__()
        if floor <= 0:
            raise ValueError(f"floor must be positive, got {floor}")
        self.floor = floor

    def forward(self, power_mix: torch.Tensor, power_noise: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        if power_mix.shape != power_noise.shape:
            raise ValueError(f"Power shapes differ: {tuple(power_mix.shape)} vs {tuple(power_noise.shape)}")

        power_noise = torch.minimum(power_mix, power_noise)

        active = power_mix != 0
        power_mix = torch.where(active, power_mix.clamp(min=self.floor), power_mix)
        power_noise = torch.where(active | (power_noise != 0), power_noise.clamp(min=self.floor), power_noise)

        snr = ((power_mix - power_noise) / power_noise).clamp(min=self.floor)
        snr = torch.where(active, snr, torch.zeros_like(snr))

        n_active = active.sum(dim=-1)
        snrenv = snr.sum(dim=-1) / n_active.clamp(min=1)

        return snr, snrenv

    def extra_repr(self) -> str:
        return f"floor={self.floor}"


class SNRenvIntegration(nn.Module):
    r"""
    Combine SNRenv across modulation and audio channels.

    Only modulation channels listed as usable for an audio band contribute
    (those with a center frequency below a quarter of the band's center
    frequency). The combination is a root-sum-of-squares over modulation
    channels, then over audio channels:

    .. math::
        \text{SNR}_{env,p} = \sqrt{\sum_n \text{SNR}_{env,n,p}^2}, \qquad
        \text{SNR}_{env} = \sqrt{\sum_p \text{SNR}_{env,p}^2}

    Parameters
    ----------
    num_mod_filters : sequence of int
        Number of usable modulation channels per audio band, counted from the
        lowest modulation channel.

    num_mod_channels : int, optional
        Total number of modulation channels M. Default: ``max(num_mod_filters)``.

    Attributes
    ----------
    valid : torch.Tensor
        Boolean table of usable (band, modulation channel) pairs, shape (F, M).

    Shape
    -----
    - Input: :math:`(B, F, M)` and optional band mask :math:`(B, F)`
    - Output: ``(snrenv_band, snrenv)`` of shapes :math:`(B, F)` and :math:`(B,)`

    Examples
    --------
    >>> integ = SNRenvIntegration([1, 2], num_mod_channels=2)
    >>> band, total = integ(torch.tensor([[[3.0, 5.0], [3.0, 4.0]]]))
    >>> band
    tensor([[3., 5.]])
    >>> total
    tensor([5.8310])
    """

    def __init__(self, num_mod_filters: Sequence[int], num_mod_channels: Optional[int] = None):
        super().__init__()
        counts = [int(c) for c in num_mod_filters]
        if num_mod_channels is None:
            num_mod_channels = max(counts)
        if any(c < 0 or c > num_mod_channels for c in counts):
            raise ValueError(f"Usable modulation channel counts must lie in [0, {num_mod_channels}], got {counts}")

        self.num_mod_channels = num_mod_channels
        valid = torch.arange(num_mod_channels).unsqueeze(0) < torch.tensor(counts).unsqueeze(1)
        self.register_buffer('valid', valid)

    def forward(self,
                snrenv_mod: torch.Tensor,
                band_mask: Optional[torch.Tensor] = None) -> Tuple[torch.Tensor, torch.Tensor]:
        if snrenv_mod.shape[-2:] != self.valid.shape:
            raise ValueError(f"Expected SNRenv of shape (..., {self.valid.shape[0]}, {self.valid.shape[1]}), "
                             f"got {tuple(snrenv_mod.shape)}")

        keep = self.valid
        if band_mask is not None:
            keep = keep & band_mask.unsqueeze(-1)
        snrenv_mod = torch.where(keep, snrenv_mod, torch.zeros_like(snrenv_mod))

        snrenv_band = torch.sqrt((snrenv_mod ** 2).sum(dim=-1))
        snrenv = torch.sqrt((snrenv_band ** 2).sum(dim=-1))
        return snrenv_band, snrenv

    def extra_repr(self) -> str:
        return f"num_bands={self.valid.shape[0]}, num_mod_channels={self.num_mod_channels}"
