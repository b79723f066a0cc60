import pytest
import torch

from crbm import DynConvRBM, UnitType

@pytest.fixture(autouse = True)
def seed():
    
    # for reproducibility
    
    torch.manual_seed(42)

@pytest.fixture
def small_rbm():
    return DynConvRBM(num_channels = 1,
                      visible_dims = (5,5),
                      num_filters = 2,
                      hidden_dims = (3,3),
                      visible_unit = UnitType.BINARY,
                      hidden_unit = UnitType.BINARY)
