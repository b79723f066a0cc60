from .models.CRBM.dyn_conv import DynConvRBM, ParameterSnapshot
from .models.CRBM.units import UnitType
from .utils.parallel import ThreadPool

__version__ = '0.1.0'
