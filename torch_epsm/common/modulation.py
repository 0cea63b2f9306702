"""
Modulation Filterbank
=====================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Frequency-domain modulation filterbank of the envelope power spectrum models
(sEPSM / mr-sEPSM): a 3rd-order Butterworth low-pass at 1 Hz followed by
octave-spaced resonant band-pass filters with a constant quality factor,
applied as transfer functions on the FFT of the whole envelope.

References
----------
.. [1] S. Jørgensen, S. D. Ewert, and T. Dau, "A multi-resolution envelope-power
       based model for speech intelligibility," *J. Acoust. Soc. Am.*, vol. 134,
       no. 1, pp. 436-446, 2013.

.. [2] S. D. Ewert and T. Dau, "Characterizing frequency selectivity for envelope
       fluctuations," *J. Acoust. Soc. Am.*, vol. 108, no. 3, pp. 1181-1196, 2000.
"""

from typing import Sequence

import torch
import torch.nn as nn


class EPSMModulationFilterbank(nn.Module):
    r"""
    Modulation filterbank applied in the frequency domain.

    For an envelope of (odd) length :math:`N` with spectrum :math:`X(f)`, channel
    :math:`m` outputs :math:`\text{Re}\{\text{IFFT}(X \cdot H_m)\}` with

    - channel 0 (low-pass, :math:`f_{c,0}` = ``lp_cutoff``):

      .. math::
          H_0(f) = \sqrt{\frac{1}{1 + (f / f_{c,0})^{2 \cdot \text{lp\_order}}}}

    - channels :math:`m \geq 1` (resonant band-pass):

      .. math::
          H_m(f) = \frac{1}{1 + jQ\left(\frac{f}{f_{c,m}} - \frac{f_{c,m}}{f}\right)},
          \quad H_m(0) = 0

    An even-length input is shortened by its last sample first, so every
    channel output has the same odd length. The frequency axis is
    ``[linspace(0, fs/2, N//2 + 1), -flip(pos[1:])]``, the layout of the AMT
    ``modFbank_v3`` routine, which keeps the filter responses Hermitian.

    Parameters
    ----------
    fs : float
        Sampling rate of the envelope in Hz.

    mfc : sequence of float, optional
        Modulation center frequencies in Hz. The first entry is the low-pass
        cutoff, the others are band-pass centers.
        Default: ``[1, 2, 4, 8, 16, 32, 64, 128, 256]``.

    q : float, optional
        Quality factor of the band-pass filters. Default: 1.0.

    lp_order : int, optional
        Order of the Butterworth-shaped low-pass magnitude. Default: 3.

    dtype : torch.dtype, optional
        Real data type of the transfer functions. Default: torch.float32.

    Attributes
    ----------
    mfc : torch.Tensor
        Modulation center frequencies, shape (M,).

    num_filters : int
        Number of modulation channels M.

    Shape
    -----
    - Input: :math:`(..., T)`
    - Output: :math:`(..., M, N)` with :math:`N = T` if :math:`T` is odd,
      else :math:`T - 1`

    Examples
    --------
    >>> mfb = EPSMModulationFilterbank(fs=2205)
    >>> env = torch.rand(2, 22, 2205)
    >>> mfb(env).shape
    torch.Size([2, 22, 9, 2205])
    """

    def __init__(self,
                 fs: float,
                 mfc: Sequence[float] = (1, 2, 4, 8, 16, 32, 64, 128, 256),
                 q: float = 1.0,
                 lp_order: int = 3,
                 dtype: torch.dtype = torch.float32):
        super().__init__()

        if fs <= 0:
            raise ValueError(f"fs must be positive, got {fs}")
        if len(mfc) < 1:
            raise ValueError("mfc must contain at least the low-pass cutoff")
        if any(f <= 0 for f in mfc):
            raise ValueError(f"Modulation frequencies must be positive, got {list(mfc)}")
        if q <= 0:
            raise ValueError(f"q must be positive, got {q}")

        self.fs = fs
        self.q = q
        self.lp_order = lp_order
        self.dtype = dtype

        self.register_buffer('mfc', torch.tensor(list(mfc), dtype=dtype))
        self.num_filters = len(self.mfc)

    def frequency_axis(self, n: int) -> torch.Tensor:
        """Signed FFT frequency axis used by :meth:`transfer_functions`, shape (n,)."""
        pos = torch.linspace(0, self.fs / 2, n // 2 + 1, dtype=self.dtype, device=self.mfc.device)
        neg = -torch.flip(pos[1:], dims=[0])
        return torch.cat([pos, neg])[:n]

    def transfer_functions(self, n: int) -> torch.Tensor:
        """
        Complex transfer functions of all channels on an ``n``-point FFT grid.

        Parameters
        ----------
        n : int
            FFT length (odd, as used in :meth:`forward`).

        Returns
        -------
        torch.Tensor
            Complex tensor of shape (M, n).
        """
        f = self.frequency_axis(n)
        complex_dtype = torch.complex128 if self.dtype == torch.float64 else torch.complex64

        H = torch.zeros(self.num_filters, n, dtype=complex_dtype, device=f.device)

        # Low-pass
        H[0] = torch.sqrt(1.0 / (1.0 + (f / self.mfc[0]) ** (2 * self.lp_order))).to(complex_dtype)

        # Band-pass: f = 0 excluded, its limit is 0
        if self.num_filters > 1:
            fc = self.mfc[1:].unsqueeze(1)
            nonzero = f != 0
            f_safe = torch.where(nonzero, f, torch.ones_like(f)).unsqueeze(0)
            detuning = self.q * (f_safe / fc - fc / f_safe)
            bp = 1.0 / (1.0 + 1j * detuning.to(complex_dtype))
            H[1:] = torch.where(nonzero.unsqueeze(0), bp, torch.zeros_like(bp))

        return H

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Filter envelopes through all modulation channels.

        Parameters
        ----------
        x : torch.Tensor
            Real envelopes, shape (..., T).

        Returns
        -------
        torch.Tensor
            Real modulation channel outputs, shape (..., M, N) with N odd.
        """
        if x.shape[-1] % 2 == 0:
            x = x[..., :-1]
        n = x.shape[-1]
        if n < 1:
            raise ValueError("Envelope must contain at least one sample after odd-length trimming")

        X = torch.fft.fft(x.to(self.dtype), dim=-1).unsqueeze(-2)
        H = self.transfer_functions(n)

        return torch.fft.ifft(X * H, dim=-1).real

    def extra_repr(self) -> str:
        return (f"fs={self.fs}, num_filters={self.num_filters}, q={self.q}, "
                f"lp_order={self.lp_order}, mfc={self.mfc.tolist()}")
