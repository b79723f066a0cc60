import torch
import torchvision as tv
import matplotlib.pyplot as plt
import time

from crbm import DynConvRBM, UnitType, ThreadPool
from crbm.utils.timers import dump_timers

# helper functions

def prep_batch(x,device):

    # MNIST image values range from 0 to 1, so need to threshold for
    # binary visible units

    x = (x > 0).type(torch.float)

    # move to GPU if available

    return x.to(device)

def mean_free_energy(rbm,x):

    # free energy is defined per sample

    with torch.no_grad():
        energies = [rbm.free_energy(v).item() for v in x]

    return sum(energies) / len(energies)

def monitor_batch(x,rbm,device):

    x = prep_batch(x,device)

    # sample from p(v,h) with a Gibbs chain started at the data

    v,h,h_given_v = rbm(x)

    # noise images with the same density of active pixels as the data

    noise = torch.bernoulli(torch.full_like(x,x.mean().item()))

    return (mean_free_energy(rbm,x),
            mean_free_energy(rbm,v),
            mean_free_energy(rbm,noise),
            torch.mean((x - v)**2).item())

# for reproducibility

torch.manual_seed(42)

# check if GPU is available

use_cuda = torch.cuda.is_available()

# to put tensors on GPU if available

device = torch.device('cuda' if use_cuda else 'cpu')

batch_size = 64

# number of batches to monitor

num_batches = 10

test_dataset = tv.datasets.MNIST(root = '.',
                                 train = False,
                                 download = True,
                                 transform = tv.transforms.ToTensor())

test_dataloader = torch.utils.data.DataLoader(dataset = test_dataset,
                                              batch_size = batch_size,
                                              shuffle = False)

# one scheduling context for every layer

pool = ThreadPool()

rbm = DynConvRBM(num_channels = 1,
                 visible_dims = (28,28),
                 num_filters = 20,
                 hidden_dims = (20,20),
                 visible_unit = UnitType.BINARY,
                 hidden_unit = UnitType.BINARY,
                 num_sampling_iter = 2,
                 batch_size = batch_size,
                 pool = pool).to(device)

if __name__ == '__main__':

    print(rbm.describe())
    print('{} parameters, {} pool'.format(rbm.parameter_count(),pool))

    # starting time

    start = time.time()

    for i,(x,labels) in enumerate(test_dataloader):

        if i == num_batches:
            break

        data_f,recon_f,noise_f,mse = monitor_batch(x,rbm,device)

        print('Batch {}/{}: free energy data {:.3f}, reconstruction {:.3f}, '
              'noise {:.3f}, MSE {:.4f}'.format(i+1,num_batches,data_f,
                                                recon_f,noise_f,mse))

    end = time.time()
    total_time = time.strftime("%H:%M:%S",time.gmtime(end-start))
    print('\nTotal Time Elapsed (HH:MM:SS): ' + total_time)

    dump_timers()

    # show a digit, its reconstruction and the first filters

    x,_ = test_dataset[0]

    rbm.reconstruct(prep_batch(x,device))

    plt.subplot(2,2,1)
    plt.imshow(rbm.v1[0].cpu().numpy())
    plt.title('data')
    plt.subplot(2,2,2)
    plt.imshow(rbm.v2_a[0].cpu().numpy())
    plt.title('reconstruction')
    plt.subplot(2,2,3)
    plt.imshow(rbm.h1_a[0].cpu().numpy())
    plt.title('hidden map 1')
    plt.subplot(2,2,4)
    plt.imshow(rbm.w[0,0].detach().cpu().numpy())
    plt.title('filter 1')
    plt.show()
