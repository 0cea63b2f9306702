"""Speech intelligibility models."""

from torch_epsm.models.joergensen2013 import Joergensen2013, joergensen2013

__all__ = ["Joergensen2013",
           "joergensen2013"
           ]
