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
import time

import yaml


def metadata(package_name, release, proposed, *, now=None):
    if now is None:
        now = time.time()
    suffix = ' (proposed)' if proposed else ''
    return {
        'architecture': 'x86_64',
        'creation_date': int(now),
        'properties': {
            'description': f'Ubuntu {release} with {package_name}{suffix}',
            'os': 'Ubuntu',
            'release': release,
            },
        }


def tarball_path(image_path):
    return os.path.splitext(image_path)[0] + '.tar.gz'


def create_tarball(ctxt, image_path, package_name, release, proposed):
    """Wrap `image_path` as an LXD VM image: metadata.yaml + rootfs.img."""
    meta_dir = ctxt.p('lxd')
    os.makedirs(meta_dir, exist_ok=True)
    with open(os.path.join(meta_dir, 'metadata.yaml'), 'w') as fp:
        yaml.safe_dump(
            metadata(package_name, release, proposed), fp,
            default_flow_style=False, sort_keys=False)
    tarball = tarball_path(image_path)
    image_dir, image_name = os.path.split(os.path.abspath(image_path))
    with ctxt.logged(f'creating LXD tarball {tarball}'):
        ctxt.run_capture(
            [
                'tar',
                '--transform', r'flags=r;s/.*\.img$/rootfs.img/',
                '-czf', os.path.abspath(tarball),
                '-C', meta_dir, 'metadata.yaml',
                '-C', image_dir, image_name,
            ],
            context='failed to create LXD tarball')
    os.unlink(image_path)
    return tarball
