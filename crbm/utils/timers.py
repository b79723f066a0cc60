import time
import contextlib

# name -> [number of calls, total seconds]

_timers = {}

@contextlib.contextmanager
def auto_timer(name):
    
    start = time.time()
    
    try:
        yield
    finally:
        entry = _timers.setdefault(name,[0,0.0])
        entry[0] += 1
        entry[1] += time.time() - start

def get_timers():
    return {name: (count,total) for name,(count,total) in _timers.items()}

def reset_timers():
    _timers.clear()

def dump_timers():
    
    if not _timers:
        print('No timers recorded')
        return
    
    print('Timers')
    
    # longest total first
    
    for name,(count,total) in sorted(_timers.items(),
                                     key = lambda item: item[1][1],
                                     reverse = True):
        print('{} : {} calls, {:.3f} ms total, {:.3f} ms per call'.format(
              name,count,total*1000,total*1000/count))
