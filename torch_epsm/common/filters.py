"""
Signal Processing and Filtering Utilities
==========================================

PyTorch-native filtering, resampling and analytic-signal helpers shared by the
envelope power spectrum model stages.

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Contents
--------

**Signal Analysis:**
    - `torch_hilbert`: Analytic signal via FFT (MATLAB/scipy ``hilbert``)

**Resampling & FIR Filtering:**
    - `torch_resample_poly`: Polyphase resampling with a Kaiser-window FIR
      (MATLAB ``resample`` / ``scipy.signal.resample_poly``)
    - `torch_fftfilt`: Causal FIR filtering via FFT linear convolution
    - `resample_ratio`: Reduced up/down factors between two sampling rates

**IIR Filtering:**
    - `ButterworthFilter`: Butterworth filter designed with scipy, applied in PyTorch
    - `apply_sos_pytorch`: Cascade of biquads (Direct Form II)

Filter coefficients are designed once at construction with ``scipy.signal``
and applied in ``forward`` with pure PyTorch operations, so every stage runs on
CPU, CUDA or MPS tensors alike.
"""

import math
from fractions import Fraction
from typing import Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F
from scipy.signal import butter, firwin

# -------------------------------------------------- Analysis -----------------------------------------------

def torch_hilbert(x: torch.Tensor) -> torch.Tensor:
    """
    Compute the analytic signal of a real input using the FFT.

    Equivalent to ``scipy.signal.hilbert`` (and MATLAB ``hilbert``) along the
    last dimension.

    Parameters
    ----------
    x : torch.Tensor
        Real input signal, shape (..., N).

    Returns
    -------
    torch.Tensor
        Analytic signal (complex), shape (..., N). ``abs()`` of the result is
        the Hilbert envelope.
    """
    X = torch.fft.fft(x, dim=-1)
    N = x.shape[-1]

    # One-sided spectrum weights: keep DC (and Nyquist), double positive bins
    h = torch.zeros(N, device=x.device, dtype=x.dtype)
    if N % 2 == 0:
        h[0] = 1
        h[1:N//2] = 2
        h[N//2] = 1
    else:
        h[0] = 1
        h[1:(N+1)//2] = 2

    return torch.fft.ifft(X * h.to(X.dtype), dim=-1)

# ------------------------------------------------- Resampling ----------------------------------------------

def resample_ratio(fs_out: float, fs_in: float) -> Tuple[int, int]:
    """
    Reduced integer up/down factors mapping ``fs_in`` to ``fs_out``.

    Parameters
    ----------
    fs_out : float
        Target sampling rate in Hz.

    fs_in : float
        Source sampling rate in Hz.

    Returns
    -------
    tuple of int
        ``(up, down)`` with ``fs_out / fs_in == up / down`` and ``gcd(up, down) == 1``.

    Raises
    ------
    ValueError
        If either rate is not positive.
    """
    if fs_out <= 0 or fs_in <= 0:
        raise ValueError(f"Sampling rates must be positive, got fs_out={fs_out}, fs_in={fs_in}")
    ratio = Fraction(fs_out).limit_denominator(10**6) / Fraction(fs_in).limit_denominator(10**6)
    return ratio.numerator, ratio.denominator


def _kaiser_lowpass(up: int, down: int, half_len_factor: int = 10, beta: float = 5.0) -> torch.Tensor:
    """Anti-aliasing FIR used by :func:`torch_resample_poly` (float64, gain ``up``)."""
    max_rate = max(up, down)
    half_len = half_len_factor * max_rate
    h = firwin(2 * half_len + 1, 1.0 / max_rate, window=('kaiser', beta))
    return torch.tensor(h * up, dtype=torch.float64)


def torch_resample_poly(x: torch.Tensor, up: int, down: int) -> torch.Tensor:
    r"""
    Resample along the last dimension by the rational factor ``up / down``.

    Zero-stuffs the input by ``up``, filters it with a linear-phase Kaiser
    window low-pass (:math:`\beta = 5`, half length :math:`10 \cdot \max(up, down)`
    taps, cutoff :math:`1 / \max(up, down)`) and keeps every ``down``-th sample.
    The filter delay is compensated, so output sample ``i`` is aligned with
    input time ``i * down / up``.

    This is a PyTorch reimplementation of ``scipy.signal.resample_poly`` (zero
    padding, default Kaiser window), itself a port of MATLAB ``resample``, in
    the same way :func:`torch_hilbert` reimplements ``scipy.signal.hilbert``.
    Only the filter design calls scipy; the filtering runs on the input's
    device and is differentiable. Outputs agree with scipy to floating-point
    precision, which ``torchaudio.functional.resample`` (sinc interpolation
    with a different window) does not provide.

    Parameters
    ----------
    x : torch.Tensor
        Input signal, shape (..., N).

    up : int
        Upsampling factor.

    down : int
        Downsampling factor.

    Returns
    -------
    torch.Tensor
        Resampled signal, shape (..., ceil(N * up / down)).

    Examples
    --------
    >>> x = torch.randn(2, 44100, dtype=torch.float64)
    >>> y = torch_resample_poly(x, 1, 2)
    >>> y.shape
    torch.Size([2, 22050])
    """
    if up < 1 or down < 1:
        raise ValueError(f"up and down must be positive integers, got up={up}, down={down}")

    g = math.gcd(up, down)
    up, down = up // g, down // g
    if up == 1 and down == 1:
        return x

    lead_shape = x.shape[:-1]
    n_in = x.shape[-1]
    n_out = -(-n_in * up // down)

    h = _kaiser_lowpass(up, down).to(device=x.device, dtype=x.dtype)
    half_len = (h.numel() - 1) // 2

    x_flat = x.reshape(-1, 1, n_in)
    if up > 1:
        u = x_flat.new_zeros(x_flat.shape[0], 1, n_in * up)
        u[..., ::up] = x_flat
    else:
        u = x_flat

    # Centered (zero-delay) filtering, decimation through the convolution stride
    u = F.pad(u, (half_len, half_len))
    y = F.conv1d(u, h.flip(0).view(1, 1, -1), stride=down)[..., :n_out]

    return y.reshape(*lead_shape, n_out)


def torch_fftfilt(x: torch.Tensor, h: torch.Tensor) -> torch.Tensor:
    """
    Causal FIR filtering of a real signal by FFT linear convolution.

    Parameters
    ----------
    x : torch.Tensor
        Real input signal, shape (B, T).

    h : torch.Tensor
        FIR impulse responses (real or complex), shape (F, L).

    Returns
    -------
    torch.Tensor
        Filtered signals, shape (B, F, T), truncated to the input length.
        Complex if ``h`` is complex.
    """
    T = x.shape[-1]
    L = h.shape[-1]
    nfft = 2 ** int(math.ceil(math.log2(T + L - 1)))

    if h.is_complex():
        X = torch.fft.fft(x.to(h.dtype), n=nfft, dim=-1)
        H = torch.fft.fft(h, n=nfft, dim=-1)
        y = torch.fft.ifft(X.unsqueeze(1) * H.unsqueeze(0), n=nfft, dim=-1)
    else:
        X = torch.fft.rfft(x, n=nfft, dim=-1)
        H = torch.fft.rfft(h, n=nfft, dim=-1)
        y = torch.fft.irfft(X.unsqueeze(1) * H.unsqueeze(0), n=nfft, dim=-1)

    return y[..., :T]

# -------------------------------------------------- Filters ------------------------------------------------

class ButterworthFilter(nn.Module):
    """
    Butterworth low-pass filter designed with scipy and applied in PyTorch.

    Coefficients come from ``scipy.signal.butter`` (SOS form) at construction;
    ``forward`` runs the biquad cascade with zero initial conditions, i.e.
    MATLAB ``filter(b, a, x)`` along the last dimension.

    Parameters
    ----------
    order : int
        Filter order.

    cutoff : float
        Cutoff frequency in Hz, below ``fs / 2``.

    fs : float
        Sampling rate in Hz.

    learnable : bool, optional
        If True, the SOS coefficients become an ``nn.Parameter``. Default: ``False``.

    dtype : torch.dtype, optional
        Coefficient data type. Default: torch.float32.

    Shape
    -----
    - Input: :math:`(B, C, T)`, :math:`(C, T)` or :math:`(T,)`
    - Output: same shape as input

    Examples
    --------
    >>> lp = ButterworthFilter(order=1, cutoff=150.0, fs=22050)
    >>> env = torch.rand(2, 22, 22050)
    >>> lp(env).shape
    torch.Size([2, 22, 22050])
    """

    def __init__(self,
                 order: int,
                 cutoff: float,
                 fs: float,
                 learnable: bool = False,
                 dtype: torch.dtype = torch.float32):
        super().__init__()

        if order < 1:
            raise ValueError(f"order must be at least 1, got {order}")
        if not 0 < cutoff < fs / 2:
            raise ValueError(f"cutoff must lie in (0, fs/2) = (0, {fs / 2}), got {cutoff}")

        self.order = order
        self.cutoff = cutoff
        self.fs = fs
        self.learnable = learnable
        self.dtype = dtype

        sos_tensor = torch.tensor(butter(order, cutoff, btype='low', fs=fs, output='sos'), dtype=dtype)
        if learnable:
            self.sos = nn.Parameter(sos_tensor)
        else:
            self.register_buffer('sos', sos_tensor)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Filter along the last dimension.

        Parameters
        ----------
        x : torch.Tensor
            Input signal, shape (B, C, T), (C, T) or (T,).

        Returns
        -------
        torch.Tensor
            Filtered signal, same shape as input.
        """
        return apply_sos_pytorch(x, self.sos.to(dtype=x.dtype))

    def extra_repr(self) -> str:
        return f"order={self.order}, cutoff={self.cutoff:.1f} Hz, fs={self.fs}, learnable={self.learnable}"

# ------------------------------------------------- Utilities ------------------------------------------------

def apply_sos_pytorch(x: torch.Tensor, sos: torch.Tensor) -> torch.Tensor:
    """
    Apply an SOS cascade along the last dimension (Direct Form II).

    Parameters
    ----------
    x : torch.Tensor
        Input signal, shape (B, C, T), (C, T) or (T,).

    sos : torch.Tensor
        SOS coefficients, shape (n_sections, 6), rows ``[b0, b1, b2, a0, a1, a2]``.

    Returns
    -------
    torch.Tensor
        Filtered signal, same shape as input. Matches ``scipy.signal.sosfilt``
        with zero initial state.
    """
    original_shape = x.shape
    if x.ndim == 1:
        x = x.unsqueeze(0).unsqueeze(0)
    elif x.ndim == 2:
        x = x.unsqueeze(0)
    elif x.ndim != 3:
        raise ValueError(f"Input must be 1D, 2D, or 3D, got shape {original_shape}")

    sig_len = x.shape[-1]
    y_flat = x.reshape(-1, sig_len)

    for section in sos:
        b0, b1, b2, a0, a1, a2 = section
        y_flat = _apply_sos_section_batch(y_flat, b0 / a0, b1 / a0, b2 / a0, a1 / a0, a2 / a0)

    return y_flat.reshape(original_shape)


def _apply_sos_section_batch(x: torch.Tensor,
                             b0: torch.Tensor, b1: torch.Tensor, b2: torch.Tensor,
                             a1: torch.Tensor, a2: torch.Tensor) -> torch.Tensor:
    """
    One normalized biquad over a batch of signals, looping over time only.

    Parameters
    ----------
    x : torch.Tensor
        Input signals, shape (n_signals, T).

    b0, b1, b2, a1, a2 : torch.Tensor
        Section coefficients normalized by ``a0``.

    Returns
    -------
    torch.Tensor
        Filtered signals, shape (n_signals, T).
    """
    n_signals, T = x.shape
    y = torch.zeros_like(x)
    w1 = torch.zeros(n_signals, dtype=x.dtype, device=x.device)
    w2 = torch.zeros(n_signals, dtype=x.dtype, device=x.device)

    for n in range(T):
        w0 = x[:, n] - a1 * w1 - a2 * w2
        y[:, n] = b0 * w0 + b1 * w1 + b2 * w2
        w2 = w1
        w1 = w0

    return y
