"""
Ideal Observer
==============

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Decision back end of the envelope power spectrum models: converts the overall
SNRenv into the expected percentage of correctly identified words of an
m-alternative speech material.

References
----------
.. [1] D. M. Green and T. G. Birdsall, "The effect of vocabulary size on
       articulation score," in *Signal Detection and Recognition by Human
       Observers*, J. A. Swets, Ed. New York: Wiley, 1964.

.. [2] S. Jørgensen and T. Dau, "Predicting speech intelligibility based on the
       signal-to-noise envelope power ratio after modulation-frequency selective
       processing," *J. Acoust. Soc. Am.*, vol. 130, no. 3, pp. 1475-1487, 2011.
"""

import numbers
from typing import Sequence

import torch
import torch.nn as nn


class IdealObserver(nn.Module):
    r"""
    Green & Birdsall (1964) m-alternative ideal observer.

    .. math::
        d' = k \cdot \text{SNR}_{env}^{\,q}

    .. math::
        U_n = \Phi^{-1}\left(1 - \frac{1}{m}\right), \quad
        \mu_n = U_n + \frac{0.577}{U_n}, \quad
        \sigma_n = \frac{1.28255}{U_n}

    .. math::
        P_{correct} = 100 \cdot \Phi\left(\frac{d' - \mu_n}{\sqrt{\sigma_s^2 + \sigma_n^2}}\right)

    :math:`k`, :math:`q` and :math:`\sigma_s` are fitted to a speech material,
    :math:`m` is its response-set size.

    Parameters
    ----------
    k : float
        Sensitivity scale.

    q : float
        Sensitivity exponent.

    m : float
        Number of response alternatives, greater than 2 (:math:`U_n > 0`).

    sigma_s : float
        Standard deviation of the speech material's redundancy.

    dtype : torch.dtype, optional
        Data type of the parameter buffers. Default: torch.float64.

    Shape
    -----
    - Input: any shape, SNRenv values (linear, >= 0)
    - Output: same shape, percent correct in [0, 100]

    Examples
    --------
    >>> io = IdealObserver.from_params([1.0, 0.5, 8000, 0.6])
    >>> p = io(torch.tensor([0.0, 10.0, 100.0], dtype=torch.float64))
    >>> bool(torch.all(p[1:] > p[:-1]))
    True
    """

    def __init__(self, k: float, q: float, m: float, sigma_s: float,
                 dtype: torch.dtype = torch.float64):
        super().__init__()

        for name, value in (('k', k), ('q', q), ('m', m), ('sigma_s', sigma_s)):
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise TypeError(f"Ideal observer parameter '{name}' must be a real number, "
                                f"got {type(value).__name__}")
        if m <= 2:
            raise ValueError(f"m must be greater than 2, got {m}")

        self.register_buffer('k', torch.tensor(float(k), dtype=dtype))
        self.register_buffer('q', torch.tensor(float(q), dtype=dtype))
        self.register_buffer('m', torch.tensor(float(m), dtype=dtype))
        self.register_buffer('sigma_s', torch.tensor(float(sigma_s), dtype=dtype))

    @classmethod
    def from_params(cls, params: Sequence[float], dtype: torch.dtype = torch.float64) -> 'IdealObserver':
        """
        Build an observer from a ``[k, q, m, sigma_s]`` sequence.

        Raises
        ------
        ValueError
            If ``params`` is missing or does not hold exactly 4 values.
        TypeError
            If ``params`` is not a sequence or holds non-numeric values.
        """
        if params is None:
            raise ValueError("The ideal observer needs the parameters [k, q, m, sigma_s]")
        if isinstance(params, torch.Tensor):
            params = params.flatten().tolist()
        elif hasattr(params, 'tolist'):
            params = params.tolist()
        if isinstance(params, (str, bytes)) or not isinstance(params, Sequence):
            raise TypeError(f"Ideal observer parameters must be a sequence [k, q, m, sigma_s], "
                            f"got {type(params).__name__}")
        if len(params) != 4:
            raise ValueError(f"The ideal observer needs 4 parameters [k, q, m, sigma_s], got {len(params)}")
        return cls(*params, dtype=dtype)

    def forward(self, snrenv: torch.Tensor) -> torch.Tensor:
        snrenv = snrenv.to(self.k.dtype)
        d_prime = self.k * snrenv ** self.q

        u_n = torch.special.ndtri(1 - 1 / self.m)
        mu_n = u_n + 0.577 / u_n
        sigma_n = 1.28255 / u_n

        return 100 * torch.special.ndtr((d_prime - mu_n) / torch.sqrt(self.sigma_s ** 2 + sigma_n ** 2))

    def extra_repr(self) -> str:
        return (f"k={self.k.item():.4g}, q={self.q.item():.4g}, "
                f"m={self.m.item():.4g}, sigma_s={self.sigma_s.item():.4g}")
