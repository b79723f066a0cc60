import torch

from .exceptions import NumericalIntegrityError

def nan_check_deep(x,name = 'tensor'):
    
    # every element is scanned
    
    finite = torch.isfinite(x)
    
    if not bool(torch.all(finite)):
        bad = int(finite.numel() - torch.count_nonzero(finite))
        raise NumericalIntegrityError(
            '{} contains {} non-finite value(s) out of {}'.format(
                name,bad,finite.numel()))
    
    return x
