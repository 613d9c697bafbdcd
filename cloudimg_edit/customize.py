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
import shutil

from . import blockdev, partitions
from .guest import Guest
from .repository import PackageInstaller, Ppa, ProposedPocket
from .resolv import DnsOverride
from .source import fetch_image, image_stem


class ImageInfo:

    def __init__(self, image_path, release):
        self.image_path = image_path
        self.release = release


def output_name(image_uri, package_name, proposed=False):
    tag = '_proposed' if proposed else ''
    return f'{image_stem(image_uri)}_{package_name}{tag}.img'


def repository_overrides(proposed=False, ppa=None):
    overrides = []
    if proposed:
        overrides.append(ProposedPocket())
    if ppa:
        overrides.append(Ppa(ppa))
    return overrides


def install_in_guest(ctxt, image_path, image_format, package_name, *,
                     proposed=False, ppa=None, layout=partitions.UBUNTU_CLOUD,
                     timeout=blockdev.READY_TIMEOUT):
    """Attach and mount the image, install the package and tear down.

    Returns the release codename of the guest.  Whatever happens in here,
    the mounts and the block device are gone when this returns or raises.
    """
    with ctxt.acquired():
        device = blockdev.attach(
            ctxt, image_path, image_format, timeout=timeout)
        rootfs = partitions.mount_guest(ctxt, device, layout)
        guest = Guest(ctxt, rootfs)

        dns = DnsOverride(rootfs)
        ctxt.add_cleanup_hook(lambda: dns.restore_if_active(ctxt))
        with ctxt.logged('configuring DNS'):
            dns.enable(ctxt)

        release = guest.release()
        ctxt.log(f'guest release is {release}')

        installer = PackageInstaller(
            guest, release, repository_overrides(proposed, ppa))
        ctxt.add_cleanup_hook(installer.disable_repositories)
        with ctxt.logged(f'installing package {package_name}'):
            installer.run(package_name)

        dns.restore(ctxt)
    return release


def customize_image(ctxt, image_uri, package_name, *, image_format='qcow2',
                    proposed=False, ppa=None, output_dir='.',
                    timeout=blockdev.READY_TIMEOUT):
    ctxt.log(f'starting VM image processing for {image_uri}')
    ctxt.log(f'package to install: {package_name}')
    final_path = os.path.join(
        output_dir, output_name(image_uri, package_name, proposed))

    image_path = fetch_image(ctxt, image_uri, ctxt.p('vm_image.img'))
    release = install_in_guest(
        ctxt, image_path, image_format, package_name,
        proposed=proposed, ppa=ppa, timeout=timeout)

    with ctxt.logged(f'copying customized image to {final_path}'):
        shutil.copyfile(image_path, final_path)
    return ImageInfo(final_path, release)
