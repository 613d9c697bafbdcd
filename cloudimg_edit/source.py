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

import shutil

import requests


CLOUD_IMAGES = 'https://cloud-images.ubuntu.com/releases'
CHUNK_SIZE = 1024 * 1024
TIMEOUT = 60


def cloud_image_url(release, arch='amd64'):
    name = f'ubuntu-{release}-server-cloudimg-{arch}.img'
    return f'{CLOUD_IMAGES}/{release}/release/{name}'


def is_url(uri):
    return uri.startswith('http://') or uri.startswith('https://')


def image_stem(uri):
    name = uri.rstrip('/').split('/')[-1]
    if name.endswith('.img'):
        name = name[:-len('.img')]
    return name


def download(ctxt, url, dest):
    with ctxt.logged(f'downloading {url}'):
        with requests.get(url, stream=True, timeout=TIMEOUT) as response:
            response.raise_for_status()
            with open(dest, 'wb') as fp:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    fp.write(chunk)


def fetch_image(ctxt, uri, dest):
    """Put a private copy of the image at `dest`; never modify the source."""
    if is_url(uri):
        download(ctxt, uri, dest)
    else:
        ctxt.log(f'using local image file {uri}')
        shutil.copyfile(uri, dest)
    return dest
