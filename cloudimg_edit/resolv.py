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


RESOLV_CONF = 'etc/resolv.conf'
BACKUP_SUFFIX = '.bak'
NAMESERVER_CONF = 'nameserver 1.1.1.1\n'


class DnsOverride:
    """Swap the guest's resolv.conf for one that works inside nspawn.

    Images usually ship resolv.conf as a symlink into /run, which is empty
    when the image isn't booted, so apt inside the guest can't resolve
    anything.  The original (file or dangling link) is moved aside and
    put back by restore().
    """

    def __init__(self, rootfs):
        self.path = os.path.join(rootfs, RESOLV_CONF)
        self.backup = self.path + BACKUP_SUFFIX
        self.active = False

    def enable(self, ctxt):
        if os.path.lexists(self.path):
            ctxt.log(f'backing up {RESOLV_CONF} to {self.backup}')
            os.rename(self.path, self.backup)
            self.active = True
        with open(self.path, 'w') as fp:
            fp.write(NAMESERVER_CONF)
        self.active = True

    def restore(self, ctxt):
        if os.path.lexists(self.backup):
            ctxt.log(f'restoring original {RESOLV_CONF}')
            os.replace(self.backup, self.path)
        else:
            ctxt.log(f'no backup of {RESOLV_CONF} found, nothing to restore')
        self.active = False

    def restore_if_active(self, ctxt):
        if self.active:
            self.restore(ctxt)
