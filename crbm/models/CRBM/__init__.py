from .dyn_conv import DynConvRBM, ParameterSnapshot
from .units import UnitType, UnitRule, hidden_rule, visible_rule
