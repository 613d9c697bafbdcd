#!/usr/bin/python3

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

import inspect
import subprocess
import sys
import traceback

import requests

from cloudimg_edit import CustomizeError, cli, lxd as lxd_tarball
from cloudimg_edit.blockdev import READY_TIMEOUT
from cloudimg_edit.context import EditContext
from cloudimg_edit.customize import customize_image


HELP_TXT = """\
# cloudimg-edit [options] image-uri package
# cloudimg-edit --request build-request.yaml [options]

cloudimg-edit installs a package into an Ubuntu cloud image (a local
file or an http(s) URL), optionally from -proposed or a PPA, and writes
<image>_<package>[_proposed].img (or an LXD tarball with --lxd).
It needs root: it attaches the image with qemu-nbd or losetup and runs
apt inside it with systemd-nspawn.

Options:
"""


def customize(image_uri, package_name, *, proposed: bool = False,
              lxd: bool = False, image_format='qcow2', ppa=None,
              output_dir='.', timeout: int = READY_TIMEOUT,
              debug: bool = False):
    if lxd and image_format != 'qcow2':
        print(f"Cannot create LXD tarball from {image_format!r} image")
        sys.exit(1)

    ctxt = EditContext(debug=debug)
    try:
        info = customize_image(
            ctxt, image_uri, package_name, image_format=image_format,
            proposed=proposed, ppa=ppa, output_dir=output_dir,
            timeout=timeout)
        if lxd:
            lxd_tarball.create_tarball(
                ctxt, info.image_path, package_name, info.release, proposed)
    except subprocess.CalledProcessError as cp:
        traceback.print_exc()
        if cp.stdout:
            print("\nStdout:\n\n"+cp.stdout)
        if cp.stderr:
            print("\nStderr:\n\n"+cp.stderr)
        sys.exit(1)
    except (CustomizeError, OSError, requests.RequestException):
        traceback.print_exc()
        sys.exit(1)
    finally:
        ctxt.close()


def print_help():
    print(HELP_TXT)
    for p in inspect.signature(customize).parameters.values():
        if p.kind is not inspect.Parameter.KEYWORD_ONLY:
            continue
        opt = '--' + p.name.replace('_', '-')
        for short, name in cli.SHORT_OPTIONS.items():
            if name == p.name:
                opt += f', -{short}'
        if p.annotation is bool:
            print(f" * {opt}")
        else:
            print(f" * {opt} (default: {p.default})")
    print(" * --request FILE")
    print()


def pop_request(argv):
    """Remove --request FILE or --request=FILE from argv, returning FILE."""
    for i, arg in enumerate(argv):
        if arg == '--':
            break
        if arg.startswith('--request='):
            del argv[i]
            return arg.split('=', 1)[1]
        if arg == '--request':
            if i + 1 >= len(argv):
                raise cli.ArgException("--request needs a value")
            request = argv[i + 1]
            del argv[i:i + 2]
            return request
    return None


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    if '--help' in argv or '-h' in argv or not argv:
        print_help()
        sys.exit(0)

    try:
        request = pop_request(argv)
        kw = {}
        if request is not None:
            kw = cli.load_request(customize, request)
        kw.update(cli.parse(customize, argv))
        cli.check_required(customize, kw)
    except (cli.ArgException, OSError) as e:
        print("parsing arguments failed:", e)
        sys.exit(1)

    customize(**kw)


if __name__ == '__main__':
    main(sys.argv[1:])
