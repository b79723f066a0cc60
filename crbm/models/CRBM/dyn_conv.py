"""
Convolutional Restricted Boltzmann Machine with dimensions chosen at runtime.

This follows the CRBM definition of Honglak Lee: K shared filters of shape
(C, W1, W2) connect a (C, V1, V2) visible volume to a (K, H1, H2) hidden
volume through a valid cross-correlation, and the hidden volume reconstructs
the visible one through the adjoint (full) convolution.

Single samples and batches go through the same propagation routines, a
single sample being treated as a batch of one.

An optional torch.Generator drives weight initialization and sampling. It
must live on the same device type as the layer: a layer moved with .to()
needs a generator on its new device, otherwise sampling raises
InvalidConfigurationError.
"""

import collections
import operator

import numpy as np
import torch

from .units import UnitType, as_unit_type, is_relu, hidden_rule, visible_rule
from ...utils.checks import nan_check_deep
from ...utils.exceptions import (InvalidConfigurationError, ShapeMismatchError)
from ...utils.parallel import get_default_pool
from ...utils.timers import auto_timer

ParameterSnapshot = collections.namedtuple('ParameterSnapshot',['w','b','c'])

class DynConvRBM(torch.nn.Module):

    def __init__(self,
                 num_channels = 1,
                 visible_dims = (28,28),
                 num_filters = 20,
                 hidden_dims = (24,24),
                 visible_unit = UnitType.BINARY,
                 hidden_unit = UnitType.BINARY,
                 num_sampling_iter = 1,
                 batch_size = 25,
                 pool = None,
                 generator = None):

        # run nn.Module's constructor

        super().__init__()

        self.visible_unit = as_unit_type(visible_unit)
        self.hidden_unit = as_unit_type(hidden_unit)

        # resolve the activation rules now so that an unsupported unit
        # combination fails before anything is allocated

        self.hidden_rule = hidden_rule(self.hidden_unit,self.visible_unit)
        self.visible_rule = visible_rule(self.visible_unit)

        # number of Gibbs alternations performed by forward()

        if num_sampling_iter < 0:
            raise ValueError('num_sampling_iter must be non-negative')

        self.num_sampling_iter = num_sampling_iter

        # mini-batch size suggested to the trainer

        self.batch_size = batch_size

        # shared scheduling context and optional random generator

        self.pool = pool if pool is not None else get_default_pool()
        self.generator = generator

        # optional parameter snapshot and trainer bookkeeping

        self.snapshot = None
        self.sgd_context = None

        nv1,nv2 = visible_dims
        nh1,nh2 = hidden_dims

        self.init_layer(num_channels,nv1,nv2,num_filters,nh1,nh2)

    def init_layer(self,nc,nv1,nv2,k,nh1,nh2):

        dims = []

        for d in (nc,nv1,nv2,k,nh1,nh2):
            try:
                dims.append(operator.index(d))
            except TypeError:
                raise InvalidConfigurationError(
                    'layer dimensions must be integers, got {!r}'.format(
                        d)) from None

        if min(dims) < 1:
            raise InvalidConfigurationError(
                'all layer dimensions must be positive, got nc={}, nv1={}, '
                'nv2={}, k={}, nh1={}, nh2={}'.format(*dims))

        nc,nv1,nv2,k,nh1,nh2 = dims

        # valid convolution, no padding

        nw1 = nv1 - nh1 + 1
        nw2 = nv2 - nh2 + 1

        if nw1 < 1 or nw2 < 1:
            raise InvalidConfigurationError(
                'visible dimensions {}x{} are smaller than hidden dimensions '
                '{}x{}'.format(nv1,nv2,nh1,nh2))

        # keep the device and dtype of a previous configuration

        previous = getattr(self,'w',None)
        device = previous.device if previous is not None else torch.device('cpu')
        dtype = previous.dtype if previous is not None else torch.float32

        self._check_generator(device)

        self.nc = nc
        self.nv1 = nv1
        self.nv2 = nv2
        self.k = k
        self.nh1 = nh1
        self.nh2 = nh2
        self.nw1 = nw1
        self.nw2 = nw2

        # shared weights, hidden biases (one per filter) and visible biases
        # (one per channel)

        w = torch.randn(k,nc,nw1,nw2,dtype = dtype,device = device,
                        generator = self.generator)

        w *= 0.01

        # rectified units start without hidden bias, the others with a
        # negative one

        if is_relu(self.hidden_unit):
            b = torch.zeros(k,dtype = dtype,device = w.device)
        else:
            b = torch.full((k,),-0.1,dtype = dtype,device = w.device)

        c = torch.zeros(nc,dtype = dtype,device = w.device)

        self.w = torch.nn.Parameter(w,requires_grad = True)
        self.b = torch.nn.Parameter(b,requires_grad = True)
        self.c = torch.nn.Parameter(c,requires_grad = True)

        # state of the last reconstruction

        for name,shape in [('v1',(nc,nv1,nv2)),
                           ('h1_a',(k,nh1,nh2)),
                           ('h1_s',(k,nh1,nh2)),
                           ('v2_a',(nc,nv1,nv2)),
                           ('v2_s',(nc,nv1,nv2)),
                           ('h2_a',(k,nh1,nh2)),
                           ('h2_s',(k,nh1,nh2))]:
            self.register_buffer(name,
                                 torch.zeros(shape,dtype = dtype,
                                             device = w.device),
                                 persistent = False)

        # a snapshot of other shapes cannot be restored

        self.snapshot = None

    def input_size(self):
        return self.nv1 * self.nv2 * self.nc

    def output_size(self):
        return self.nh1 * self.nh2 * self.k

    def parameter_count(self):
        return self.nc * self.k * self.nw1 * self.nw2

    def describe(self):
        return 'CRBM(dyn)({}): {}x{}x{} -> ({}x{}) -> {}x{}x{}'.format(
            self.hidden_unit,self.nv1,self.nv2,self.nc,self.nw1,self.nw2,
            self.nh1,self.nh2,self.k)

    def extra_repr(self):
        return self.describe()

    # buffer factories

    def _zeros(self,*shape):
        return torch.zeros(shape,dtype = self.w.dtype,device = self.w.device)

    def prepare_input(self):
        return self._zeros(self.nc,self.nv1,self.nv2)

    def prepare_one_output(self):
        return self._zeros(self.k,self.nh1,self.nh2)

    def prepare_output(self,samples):
        return [self.prepare_one_output() for _ in range(samples)]

    def prepare_input_batch(self,batch_size):
        return self._zeros(batch_size,self.nc,self.nv1,self.nv2)

    def prepare_output_batch(self,batch_size):
        return self._zeros(batch_size,self.k,self.nh1,self.nh2)

    # input conversion

    def _convert(self,x,shape,batched):

        try:

            # a list of samples is stacked into a batch

            if batched and isinstance(x,(list,tuple)) and len(x) > 0 \
                    and torch.is_tensor(x[0]):
                x = torch.stack([torch.as_tensor(item) for item in x])

            if not torch.is_tensor(x):
                x = np.asarray(x)

            x = torch.as_tensor(x,dtype = self.w.dtype,device = self.w.device)

        except (TypeError,ValueError,RuntimeError) as e:
            raise ShapeMismatchError(
                'cannot convert input to a tensor: {}'.format(e)) from e

        size = int(np.prod(shape))

        if batched:
            if x.dim() == len(shape) + 1 and tuple(x.shape[1:]) == shape:
                return x

            # flat samples

            if x.dim() == 2 and x.shape[1] == size:
                return x.reshape((x.shape[0],) + shape)
        else:
            if tuple(x.shape) == shape:
                return x

            # a flat sample, any other layout is ambiguous

            if x.dim() == 1 and x.numel() == size:
                return x.reshape(shape)

        raise ShapeMismatchError(
            'expected {}{} (or flat samples of {} values), got {}'.format(
                'a batch of ' if batched else '',shape,size,tuple(x.shape)))

    def convert_input(self,v):
        return self._convert(v,(self.nc,self.nv1,self.nv2),batched = False)

    def convert_input_batch(self,v):
        return self._convert(v,(self.nc,self.nv1,self.nv2),batched = True)

    def convert_output(self,h):
        return self._convert(h,(self.k,self.nh1,self.nh2),batched = False)

    def convert_output_batch(self,h):
        return self._convert(h,(self.k,self.nh1,self.nh2),batched = True)

    @staticmethod
    def _check_out(out,value,name):

        # value always carries a batch axis, a single-sample buffer drops it

        shape = tuple(value.shape)

        if tuple(out.shape) == shape:
            return

        if shape[0] == 1 and tuple(out.shape) == shape[1:]:
            return

        raise ShapeMismatchError('{} has shape {}, expected {}'.format(
            name,tuple(out.shape),shape))

    @staticmethod
    def _fill(out,value):
        out.copy_(value.reshape(out.shape))
        return out

    def _check_generator(self,device):

        # samples are drawn on the device of the tensors, so the generator
        # has to live there too

        if self.generator is None:
            return

        if torch.device(self.generator.device).type != torch.device(device).type:
            raise InvalidConfigurationError(
                'the random generator is on {} but the layer is on {}'.format(
                    self.generator.device,device))

    # convolutions

    def hidden_input(self,v):

        # (N,C,V1,V2) -> (N,K,H1,H2), valid cross-correlation plus bias

        return torch.nn.functional.conv2d(v,self.w) + self.b.view(1,-1,1,1)

    def visible_input(self,h):

        # (N,K,H1,H2) -> (N,C,V1,V2), full convolution plus bias

        return (torch.nn.functional.conv_transpose2d(h,self.w)
                + self.c.view(1,-1,1,1))

    # generic propagation, v and h always carry a batch axis here

    def _propagate(self,x,out_a,out_s,probs,sample,propagate,rule,name):

        if not probs:
            raise ValueError('computing samples without the activation '
                             'probabilities is not supported')

        if sample:
            self._check_generator(x.device)

        with torch.no_grad(), self.pool.scope():

            pre = propagate(x)

            p = rule.probability(pre)

            nan_check_deep(p,name + ' activation probabilities')
            self._check_out(out_a,p,name + ' activation buffer')

            # probabilities always come before the sample

            if sample:
                s = rule.sample(p,pre,self.generator)
                nan_check_deep(s,name + ' samples')
                self._check_out(out_s,s,name + ' sample buffer')

            # nothing is written until every check has passed

            self._fill(out_a,p)

            if sample:
                self._fill(out_s,s)

        return out_a,out_s

    def _hidden(self,v,h_a,h_s,probs,sample):
        return self._propagate(v,h_a,h_s,probs,sample,self.hidden_input,
                               self.hidden_rule,'hidden')

    def _visible(self,h,v_a,v_s,probs,sample):
        return self._propagate(h,v_a,v_s,probs,sample,self.visible_input,
                               self.visible_rule,'visible')

    def activate_hidden(self,v_a,h_a = None,h_s = None,probs = True,
                        sample = True):

        with auto_timer('dyn_crbm:activate_hidden'):

            v = self.convert_input(v_a).unsqueeze(0)

            h_a = self.h1_a if h_a is None else h_a
            h_s = self.h1_s if h_s is None else h_s

            return self._hidden(v,h_a,h_s,probs,sample)

    def batch_activate_hidden(self,v_a,h_a = None,h_s = None,probs = True,
                              sample = True):

        with auto_timer('dyn_crbm:batch_activate_hidden'):

            v = self.convert_input_batch(v_a)

            if h_a is None:
                h_a = self.prepare_output_batch(v.shape[0])
            if h_s is None and sample:
                h_s = self.prepare_output_batch(v.shape[0])

            return self._hidden(v,h_a,h_s,probs,sample)

    def activate_visible(self,h_s,v_a = None,v_s = None,h_a = None,
                         probs = True,sample = True):

        # only the sampled hidden units drive the reconstruction, h_a is
        # accepted for symmetry with activate_hidden and ignored

        with auto_timer('dyn_crbm:activate_visible'):

            h = self.convert_output(h_s).unsqueeze(0)

            v_a = self.v2_a if v_a is None else v_a
            v_s = self.v2_s if v_s is None else v_s

            return self._visible(h,v_a,v_s,probs,sample)

    def batch_activate_visible(self,h_s,v_a = None,v_s = None,h_a = None,
                               probs = True,sample = True):

        with auto_timer('dyn_crbm:batch_activate_visible'):

            h = self.convert_output_batch(h_s)

            if v_a is None:
                v_a = self.prepare_input_batch(h.shape[0])
            if v_s is None and sample:
                v_s = self.prepare_input_batch(h.shape[0])

            return self._visible(h,v_a,v_s,probs,sample)

    def hidden_features(self,items):
        h_a = self.prepare_one_output()
        return self.activate_hidden(items,h_a,h_a,sample = False)[0]

    def batch_hidden_features(self,items):
        return self.batch_activate_hidden(items,sample = False)[0]

    # Gibbs sampling

    def reconstruct(self,items):

        # v1 -> h1 -> v2 -> h2, kept in the layer's state buffers

        with torch.no_grad():
            self.v1.copy_(self.convert_input(items))

        self.activate_hidden(self.v1,self.h1_a,self.h1_s)
        self.activate_visible(self.h1_s,self.v2_a,self.v2_s)
        self.activate_hidden(self.v2_a,self.h2_a,self.h2_s)

        return self.v2_a,self.h2_a

    def forward(self,v_0):

        v_given_h = self.convert_input_batch(v_0)

        # sample hidden units from the data, as in contrastive divergence

        h_given_v = self.batch_activate_hidden(v_given_h)[1]

        # keep the first hidden sample for the positive phase

        h_given_v_0 = h_given_v.clone()

        # Gibbs sampling

        for _ in range(self.num_sampling_iter):
            v_given_h = self.batch_activate_visible(h_given_v)[1]
            h_given_v = self.batch_activate_hidden(v_given_h)[1]

        # return v,h from p(v,h) and h|v_0 from p(h|v)

        return v_given_h,h_given_v,h_given_v_0

    # energies

    def _is_binary_binary(self):
        return (self.visible_unit == UnitType.BINARY
                and self.hidden_unit == UnitType.BINARY)

    def _is_gaussian_binary(self):
        return (self.visible_unit == UnitType.GAUSSIAN
                and self.hidden_unit == UnitType.BINARY)

    def _visible_term(self,v):

        if self._is_binary_binary():

            # c . sum_v v

            return torch.sum(self.c * torch.sum(v,dim = (1,2)))

        # sum_v (v - c)^2 / 2

        return torch.sum((v - self.c.view(-1,1,1)) ** 2 / 2.0)

    def energy(self,v,h):
        """
        E(v,h) = - sum_k hk . (Wk*v) - sum_k bk sum_h hk - c sum_v v

        for binary visible units, and with the visible term replaced by
        sum_v (v - c)^2 / 2 for Gaussian visible units. Other unit
        combinations have no energy and return 0.
        """

        v = self.convert_input(v)
        h = self.convert_output(h)

        if not (self._is_binary_binary() or self._is_gaussian_binary()):
            return self._zeros()

        with self.pool.scope():

            wv = torch.nn.functional.conv2d(v.unsqueeze(0),self.w)[0]

            first_term = self._visible_term(v)
            second_term = torch.sum(self.b * torch.sum(h,dim = (1,2)))
            third_term = torch.sum(h * wv)

            return -first_term - second_term - third_term

    def free_energy(self,v = None):
        """
        Free energy of v, the hidden units being summed out:

        F(v) = - c sum_v v - sum log(1 + exp(b + W*v))

        With no argument, the visible units of the last reconstruction are
        used.
        """

        v = self.v1 if v is None else self.convert_input(v)

        if not (self._is_binary_binary() or self._is_gaussian_binary()):
            return self._zeros()

        with self.pool.scope():

            x = self.hidden_input(v.unsqueeze(0))[0]

            hidden_term = torch.sum(torch.nn.functional.softplus(x))

            return -self._visible_term(v) - hidden_term

    # parameter snapshots

    @property
    def has_backup(self):
        return self.snapshot is not None

    def backup(self):

        with torch.no_grad():
            self.snapshot = ParameterSnapshot(self.w.detach().clone(),
                                              self.b.detach().clone(),
                                              self.c.detach().clone())

        return self.snapshot

    def restore(self):

        if self.snapshot is None:
            raise RuntimeError('there is no parameter backup to restore')

        with torch.no_grad():
            self.w.copy_(self.snapshot.w)
            self.b.copy_(self.snapshot.b)
            self.c.copy_(self.snapshot.c)

    def drop_backup(self):
        self.snapshot = None

    def init_sgd_context(self,factory):

        # the context is opaque to the layer, it only receives the shapes

        self.sgd_context = factory(self.nc,self.nv1,self.nv2,
                                   self.k,self.nh1,self.nh2)

        return self.sgd_context
