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
import shlex

from . import CustomizeError


class ReleaseError(CustomizeError):
    pass


class Guest:
    """Run commands inside the mounted image.

    Everything aimed at the guest goes through systemd-nspawn so it sees
    the image as / and gets its own process namespace.
    """

    env = {
        'DEBIAN_FRONTEND': 'noninteractive',
        'LANG': 'C.UTF-8',
        }

    def __init__(self, ctxt, rootfs):
        self.ctxt = ctxt
        self.rootfs = rootfs

    def p(self, *args):
        for a in args:
            if a.startswith('/'):
                raise Exception('no absolute paths here please')
        return os.path.join(self.rootfs, *args)

    def command(self, cmd):
        nspawn = ['systemd-nspawn', '--quiet', '-D', self.rootfs]
        for k, v in self.env.items():
            nspawn.append(f'--setenv={k}={v}')
        return nspawn + list(cmd)

    def run(self, cmd, context=None, **kw):
        return self.ctxt.run_capture(self.command(cmd), context=context, **kw)

    def os_release(self):
        info = {}
        with open(self.p('etc/os-release')) as fp:
            for line in fp:
                line = line.strip()
                if not line or line.startswith('#') or '=' not in line:
                    continue
                key, value = line.split('=', 1)
                words = shlex.split(value)
                info[key] = words[0] if words else ''
        return info

    def release(self):
        codename = self.os_release().get('VERSION_CODENAME')
        if not codename:
            raise ReleaseError(
                'could not determine release name from /etc/os-release')
        return codename.lower()
