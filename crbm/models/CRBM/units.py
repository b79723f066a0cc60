"""
Unit types of a CRBM and their activation/sampling rules.

A rule maps the pre-activation signal (bias + convolution) of one side of the
layer to activation probabilities, and those probabilities to one stochastic
sample. Rules are looked up once when a layer is built; the lookup raises
UnitTypeError for combinations that have no rule.
"""

import enum
import collections

import torch

from ...utils.exceptions import UnitTypeError

# fixed standard deviation of Gaussian visible units

GAUSSIAN_SIGMA = 0.1

class UnitType(enum.Enum):
    BINARY = 'binary'
    GAUSSIAN = 'gaussian'
    RELU = 'relu'
    RELU6 = 'relu6'
    RELU1 = 'relu1'

    def __str__(self):
        return self.name

def is_relu(unit):
    return unit in (UnitType.RELU,UnitType.RELU6,UnitType.RELU1)

def as_unit_type(unit):

    if isinstance(unit,UnitType):
        return unit

    try:
        return UnitType(str(unit).lower())
    except ValueError:
        raise UnitTypeError('unknown unit type {!r}'.format(unit)) from None

# probability(pre) -> probabilities
# sample(probabilities, pre, generator) -> sample

UnitRule = collections.namedtuple('UnitRule',['probability','sample'])

# noise models

def bernoulli(p,generator = None):
    return torch.bernoulli(p,generator = generator)

def normal_noise(x,generator = None):
    return torch.normal(x,1.0,generator = generator)

def logistic_noise(x,generator = None):

    # noisy rectified linear units: N(0, sigmoid(x)) noise

    return torch.normal(x,torch.sigmoid(x),generator = generator)

def ranged_noise(x,bound,generator = None):

    # values sitting on either bound are kept as they are

    noisy = normal_noise(x,generator)
    saturated = (x == 0.0) | (x == bound)
    return torch.clamp(torch.where(saturated,x,noisy),0.0,bound)

# hidden rules

def _binary_probability(pre):
    return torch.sigmoid(pre)

def _binary_gaussian_probability(pre):
    return torch.sigmoid(pre / (GAUSSIAN_SIGMA * GAUSSIAN_SIGMA))

def _bernoulli_sample(probs,pre,generator = None):
    return bernoulli(probs,generator)

def _relu_probability(pre):
    return torch.clamp(pre,min = 0.0)

def _relu_sample(probs,pre,generator = None):

    # noise goes on the raw pre-activation, then the result is rectified

    return torch.clamp(logistic_noise(pre,generator),min = 0.0)

def _bounded_relu(bound):

    def probability(pre):
        return torch.clamp(pre,0.0,bound)

    def sample(probs,pre,generator = None):
        return ranged_noise(probs,bound,generator)

    return UnitRule(probability,sample)

_HIDDEN_RULES = {
    (UnitType.BINARY,UnitType.BINARY): UnitRule(_binary_probability,
                                                _bernoulli_sample),
    (UnitType.BINARY,UnitType.GAUSSIAN): UnitRule(_binary_gaussian_probability,
                                                  _bernoulli_sample),
    UnitType.RELU: UnitRule(_relu_probability,_relu_sample),
    UnitType.RELU6: _bounded_relu(6.0),
    UnitType.RELU1: _bounded_relu(1.0),
}

# visible rules

def _identity_probability(pre):
    return pre

def _normal_sample(probs,pre,generator = None):
    return normal_noise(probs,generator)

_VISIBLE_RULES = {
    UnitType.BINARY: UnitRule(_binary_probability,_bernoulli_sample),
    UnitType.GAUSSIAN: UnitRule(_identity_probability,_normal_sample),
}

def hidden_rule(hidden_unit,visible_unit):

    hidden_unit = as_unit_type(hidden_unit)
    visible_unit = as_unit_type(visible_unit)

    if is_relu(hidden_unit):
        return _HIDDEN_RULES[hidden_unit]

    try:
        return _HIDDEN_RULES[(hidden_unit,visible_unit)]
    except KeyError:
        raise UnitTypeError(
            'no activation rule for {} hidden units over {} visible '
            'units'.format(hidden_unit,visible_unit)) from None

def visible_rule(visible_unit):

    visible_unit = as_unit_type(visible_unit)

    try:
        return _VISIBLE_RULES[visible_unit]
    except KeyError:
        raise UnitTypeError(
            'no activation rule for {} visible units'.format(
                visible_unit)) from None
