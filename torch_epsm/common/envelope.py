"""
Hilbert Envelope Extraction
===========================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Temporal envelope extraction used by the envelope power spectrum models
(sEPSM, mr-sEPSM): Hilbert magnitude of each peripheral band, smoothed by a
low-order Butterworth low-pass and decimated, since no modulation filter is
tuned above a few hundred Hz.

References
----------
.. [1] S. Jørgensen and T. Dau, "Predicting speech intelligibility based on the
       signal-to-noise envelope power ratio after modulation-frequency selective
       processing," *J. Acoust. Soc. Am.*, vol. 130, no. 3, pp. 1475-1487, 2011.
"""

import logging

import torch
import torch.nn as nn

from torch_epsm.common.filters import ButterworthFilter, torch_hilbert, torch_resample_poly

logger = logging.getLogger(__name__)


class HilbertEnvelope(nn.Module):
    r"""
    Hilbert envelope, low-pass smoothing and decimation.

    For a real band signal :math:`x(t)`:

    1. **Hilbert magnitude**: :math:`e(t) = |x(t) + j\,\mathcal{H}\{x\}(t)|`
    2. **Low-pass**: Butterworth of order ``order`` at ``cutoff`` Hz, causal,
       zero initial state (MATLAB ``filter(b, a, e)``)
    3. **Decimation**: polyphase resampling to ``fs / decimation``
       (MATLAB ``resample(e, 1, decimation)``)

    The output has :math:`\lceil T / \text{decimation} \rceil` samples and is
    non-negative up to the ripple of the resampling filter.

    Parameters
    ----------
    fs : float
        Sampling rate of the band signals in Hz.

    cutoff : float, optional
        Low-pass cutoff in Hz. Default: 150.0.

    decimation : int, optional
        Integer decimation factor. Default: 10.

    order : int, optional
        Butterworth order. Default: 1.

    learnable : bool, optional
        If True, the low-pass coefficients are learnable. Default: ``False``.

    dtype : torch.dtype, optional
        Data type of the filter coefficients. Default: torch.float32.

    Attributes
    ----------
    fs_out : float
        Sampling rate of the envelope, ``fs / decimation``.

    lowpass : ButterworthFilter
        Envelope smoothing filter.

    Shape
    -----
    - Input: :math:`(B, F, T)`, :math:`(F, T)` or :math:`(T,)`
    - Output: :math:`(B, F, \lceil T/D \rceil)`, :math:`(F, \lceil T/D \rceil)`
      or :math:`(\lceil T/D \rceil,)`

    Examples
    --------
    >>> env = HilbertEnvelope(fs=22050)
    >>> bands = torch.randn(2, 22, 22050)
    >>> env(bands).shape
    torch.Size([2, 22, 2205])
    >>> env.fs_out
    2205.0
    """

    def __init__(self,
                 fs: float,
                 cutoff: float = 150.0,
                 decimation: int = 10,
                 order: int = 1,
                 learnable: bool = False,
                 dtype: torch.dtype = torch.float32):
        super().__init__()

        if fs <= 0:
            raise ValueError(f"fs must be positive, got {fs}")
        if decimation < 1 or int(decimation) != decimation:
            raise ValueError(f"decimation must be a positive integer, got {decimation}")

        self.fs = fs
        self.cutoff = cutoff
        self.decimation = int(decimation)
        self.order = order
        self.fs_out = fs / self.decimation

        self.lowpass = ButterworthFilter(order=order, cutoff=cutoff, fs=fs,
                                         learnable=learnable, dtype=dtype)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Extract the decimated envelope of each band.

        Parameters
        ----------
        x : torch.Tensor
            Real band signals, shape (B, F, T), (F, T) or (T,).

        Returns
        -------
        torch.Tensor
            Envelopes at ``fs_out``, same leading shape as input.
        """
        if x.is_complex():
            raise ValueError("HilbertEnvelope expects real band signals; take 2 * x.real first")

        env = torch.abs(torch_hilbert(x))
        env = self.lowpass(env)
        env = torch_resample_poly(env, 1, self.decimation)

        logger.debug("Envelope: %s -> %s samples at %.1f Hz", x.shape[-1], env.shape[-1], self.fs_out)
        return env

    def extra_repr(self) -> str:
        return (f"fs={self.fs}, cutoff={self.cutoff} Hz, order={self.order}, "
                f"decimation={self.decimation}, fs_out={self.fs_out}")
