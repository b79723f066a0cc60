"""
Scheduling context shared by CRBM layers.

PyTorch parallelizes convolutions and element-wise operations with its own
intra-op thread pool, so the context only decides how many threads that pool
may use while a layer operation runs. A single ThreadPool is meant to be
shared by reference between layers; copying a layer does not create a new
one.
"""

import os
import contextlib
import threading

import torch

ENV_THREADS = 'CRBM_THREADS'

# number of open scopes and the thread count found by the first one

_scope_lock = threading.Lock()
_depth = 0
_saved_threads = None

class ThreadPool:

    def __init__(self,num_threads = None,serial = False):
        
        if serial:
            num_threads = 1
        elif num_threads is None:
            num_threads = default_num_threads()
        
        if num_threads < 1:
            raise ValueError('a thread pool needs at least one thread, '
                             'got {}'.format(num_threads))
        
        self.num_threads = int(num_threads)
        self.serial = self.num_threads == 1
    
    @contextlib.contextmanager
    def scope(self):
        
        # the intra-op thread count is process wide, so only the outermost
        # of overlapping scopes restores the count it found
        
        global _depth, _saved_threads
        
        with _scope_lock:
            if _depth == 0:
                _saved_threads = torch.get_num_threads()
            _depth += 1
            if torch.get_num_threads() != self.num_threads:
                torch.set_num_threads(self.num_threads)
        
        try:
            yield self
        finally:
            with _scope_lock:
                _depth -= 1
                if _depth == 0 and torch.get_num_threads() != _saved_threads:
                    torch.set_num_threads(_saved_threads)
    
    # copies of a layer keep sharing the same context

    def __copy__(self):
        return self

    def __deepcopy__(self,memo):
        return self

    def __repr__(self):
        return 'ThreadPool(num_threads={}, serial={})'.format(
            self.num_threads,self.serial)

def default_num_threads():
    
    value = os.environ.get(ENV_THREADS)
    
    if value is None or value.strip() == '':
        return torch.get_num_threads()
    
    try:
        return max(1,int(value))
    except ValueError:
        raise ValueError('{} must be an integer, got {!r}'.format(
            ENV_THREADS,value)) from None

_default_pool = None

def get_default_pool():
    
    global _default_pool
    
    if _default_pool is None:
        _default_pool = ThreadPool()
    
    return _default_pool
