# Copyright 2021 Canonical Ltd.
#
# SPDX-License-Identifier: GPL-3.0
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License version 3, as
# published by the Free Software Foundation.
#
# This program is distributed in the hope that it will be useful, but
# WITHOUT ANY WARRANTY; without even the implied warranties of
# MERCHANTABILITY, SATISFACTORY QUALITY, or FITNESS FOR A PARTICULAR
# PURPOSE.  See the GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see
# <http://www.gnu.org/licenses/>.

import fcntl
import glob
import os
import time

from . import CustomizeError


SYSFS_BLOCK = '/sys/block'
LOCK_DIR = '/run/lock'
READY_TIMEOUT = 30
POLL_INTERVAL = 0.2


class DeviceUnavailableError(CustomizeError):
    pass


class DeviceNotReadyError(CustomizeError):
    pass


class BlockDevice:

    def __init__(self, path):
        self.path = path
        self.attached = True

    def __str__(self):
        return self.path

    def partition(self, number):
        return f'{self.path}p{number}'

    def wait_ready(self, ctxt, timeout=READY_TIMEOUT):
        ctxt.run(['udevadm', 'settle'], check=False)
        first = self.partition(1)
        deadline = time.monotonic() + timeout
        while not os.path.exists(first):
            if time.monotonic() >= deadline:
                raise DeviceNotReadyError(
                    f'{first} did not appear within {timeout} seconds')
            time.sleep(POLL_INTERVAL)
        ctxt.log(f'{self.path} is ready')

    def _detach_cmd(self):
        raise NotImplementedError(self._detach_cmd)

    def detach(self, ctxt):
        if not self.attached:
            return
        self.attached = False
        cp = ctxt.run_capture(self._detach_cmd(), check=False)
        if cp.returncode == 0:
            ctxt.log(f'detached {self.path}')
        elif 'No such device' in cp.stderr:
            ctxt.log(f'{self.path} was already detached')
        else:
            ctxt.log(
                f'detaching {self.path} failed with exit code '
                f'{cp.returncode}: {cp.stderr.strip()}')


class LoopDevice(BlockDevice):

    def _detach_cmd(self):
        return ['losetup', '--detach', self.path]


class NbdDevice(BlockDevice):

    def __init__(self, path, lock_fp=None):
        super().__init__(path)
        self.attached = False
        self._lock_fp = lock_fp

    def connect(self, ctxt, image_path, fmt):
        ctxt.run_capture(
            [
                'qemu-nbd',
                '--format', fmt,
                '--connect', self.path,
                image_path,
            ],
            context=f'failed to connect {image_path} to {self.path}')
        self.attached = True

    def _detach_cmd(self):
        return ['qemu-nbd', '--disconnect', self.path]

    def detach(self, ctxt):
        try:
            super().detach(ctxt)
        finally:
            self.release()

    def release(self):
        if self._lock_fp is not None:
            self._lock_fp.close()
            self._lock_fp = None


def _nbd_index(syspath):
    return int(os.path.basename(syspath)[len('nbd'):])


def reserve_nbd(*, sysfs=SYSFS_BLOCK, lock_dir=LOCK_DIR):
    """Find an nbd device nobody is using and lock it for this process.

    The lock is an flock on a file named after the device, so two runs
    can never pick the same node.  A device with a pid attribute is
    already connected by someone who doesn't take our lock.
    """
    for syspath in sorted(glob.glob(f'{sysfs}/nbd*'), key=_nbd_index):
        name = os.path.basename(syspath)
        lock_path = os.path.join(lock_dir, f'cloudimg-edit-{name}.lock')
        lock_fp = open(lock_path, 'w')
        try:
            fcntl.flock(lock_fp, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_fp.close()
            continue
        if os.path.exists(os.path.join(syspath, 'pid')):
            lock_fp.close()
            continue
        return NbdDevice(f'/dev/{name}', lock_fp)
    raise DeviceUnavailableError('no free nbd device available')


def attach_nbd(ctxt, image_path, fmt, **kw):
    ctxt.run_capture(
        ['modprobe', 'nbd', 'max_part=16'],
        context='failed to load the nbd kernel module')
    device = reserve_nbd(**kw)
    try:
        device.connect(ctxt, image_path, fmt)
    except BaseException:
        device.release()
        raise
    return device


def attach_loop(ctxt, image_path):
    path = ctxt.output(
        ['losetup', '--show', '--find', '--partscan', image_path],
        context=f'failed to set up a loop device for {image_path}')
    return LoopDevice(path)


def attach(ctxt, image_path, fmt, *, timeout=READY_TIMEOUT, **kw):
    """Expose `image_path` as a block device and record it on `ctxt`.

    Raw images go on a loop device; anything else (qcow2, vpc, vmdk...)
    is served by qemu-nbd with the format passed explicitly.  The device
    is recorded before waiting for its partitions so that teardown
    detaches it even if it never becomes ready.
    """
    with ctxt.logged(f'attaching {fmt} image {image_path}'):
        if fmt == 'raw':
            device = attach_loop(ctxt, image_path)
        else:
            device = attach_nbd(ctxt, image_path, fmt, **kw)
        ctxt.device = device
        ctxt.log(f'set up {device} backing {image_path}')
        device.wait_ready(ctxt, timeout)
    return device
