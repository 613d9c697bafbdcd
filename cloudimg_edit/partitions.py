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

import os

from . import CommandError, CustomizeError


class PartitionError(CustomizeError):
    pass


class Layout:
    """Where the partitions of an image live.

    `boot` lists the slots the boot partition has been seen in, most
    likely first.  An image with none of them present (jammy keeps /boot
    on the root filesystem) is mounted without a separate /boot; only
    slots that exist but all fail to mount are an error.
    """

    def __init__(self, *, root=1, boot=(13, 16), efi=15):
        self.root = root
        self.boot = tuple(boot)
        self.efi = efi


# Ubuntu cloud images: rootfs on 1, ESP on 15, /boot on 13 before noble
# and 16 from noble on (jammy has no separate /boot at all).
UBUNTU_CLOUD = Layout()


def mount_boot(ctxt, device, target, slots):
    present = [n for n in slots if os.path.exists(device.partition(n))]
    if not present:
        ctxt.log(
            f'no boot partition in slots {list(slots)}, /boot is on the '
            f'root filesystem')
        return None
    failure = None
    for number in present:
        part = device.partition(number)
        try:
            return ctxt.add_mount(part, target)
        except CommandError as e:
            ctxt.log(f'mounting {part} on /boot failed, trying next slot')
            failure = e
    raise PartitionError(
        f'could not mount a boot partition from {device} '
        f'(tried slots {present})') from failure


def mount_guest(ctxt, device, layout=UBUNTU_CLOUD):
    """Mount root, boot and EFI partitions of `device` under ctxt.rootfs.

    Order matters: /boot/efi is nested inside /boot which is nested inside
    the root.  Nothing here unmounts; teardown does that in one go.
    """
    rootfs = ctxt.rootfs
    boot = os.path.join(rootfs, 'boot')
    with ctxt.logged('mounting partitions'):
        ctxt.add_mount(
            device.partition(layout.root), rootfs,
            context=f'failed to mount the root filesystem of {device}')
        mount_boot(ctxt, device, boot, layout.boot)
        ctxt.add_mount(
            device.partition(layout.efi), os.path.join(boot, 'efi'),
            context=f'failed to mount the EFI system partition of {device}')
    return rootfs
