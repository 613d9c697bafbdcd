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

import contextlib
import os
import shlex
import shutil
import tempfile

from . import run, run_capture


class EditContext:

    def __init__(self, *, debug=False, workdir=None):
        self.debug = debug
        self.dir = tempfile.mkdtemp(dir=workdir, prefix='cloudimg-edit-')
        self._indent = ''
        self._cleanup_hooks = []
        self.device = None
        self.rootfs = self.p('rootfs')
        self._unmounted = None

    def _describe(self, cmd):
        msg = []
        for arg in cmd:
            arg = shlex.quote(str(arg))
            arg = arg.replace(self.dir, '${BASE}')
            msg.append(arg)
        return ' '.join(msg)

    def run(self, cmd, check=True, context=None, **kw):
        cmd = [str(arg) for arg in cmd]
        self.log(f"running: {self._describe(cmd)}")
        cp = run(cmd, check=check, context=context, **kw)
        if self.debug:
            msg = f"exit code {cp.returncode}"
            if cp.stdout is not None:
                msg += f" {len(cp.stdout)} bytes of output"
            if cp.stderr is not None:
                msg += f" {len(cp.stderr)} bytes of error"
            self.log(msg)
        return cp

    def run_capture(self, cmd, check=True, context=None, **kw):
        cmd = [str(arg) for arg in cmd]
        self.log(f"running: {self._describe(cmd)}")
        cp = run_capture(cmd, check=check, context=context, **kw)
        if self.debug:
            self.log(
                f"exit code {cp.returncode} {len(cp.stdout)} bytes of output "
                f"{len(cp.stderr)} bytes of error")
        return cp

    def output(self, cmd, context=None, **kw):
        return self.run_capture(cmd, context=context, **kw).stdout.strip()

    def log(self, msg):
        print(self._indent + msg, flush=True)

    @contextlib.contextmanager
    def logged(self, msg, done_msg=None):
        self.log(msg)
        self._indent += '  '
        try:
            yield
        finally:
            self._indent = self._indent[:-2]
        if done_msg is not None:
            self.log(done_msg)

    def p(self, *args):
        for a in args:
            if a.startswith('/'):
                raise Exception('no absolute paths here please')
        return os.path.join(self.dir, *args)

    def add_mount(self, src, mountpoint, *, context=None):
        os.makedirs(mountpoint, exist_ok=True)
        if context is None:
            context = f'failed to mount {src} on {mountpoint}'
        self.run_capture(['mount', src, mountpoint], context=context)
        self.log(f'mounted {src} on {mountpoint}')
        return mountpoint

    def add_cleanup_hook(self, hook):
        """Register `hook` to run at teardown, before anything is unmounted.

        Hooks run in reverse order of registration and must be safe to call
        after the thing they undo has already been undone.
        """
        self._cleanup_hooks.append(hook)

    def _run_cleanup_hooks(self):
        while self._cleanup_hooks:
            hook = self._cleanup_hooks.pop()
            try:
                hook()
            except Exception as e:
                self.log(f"cleanup step failed: {e}")

    def unmount_all(self):
        if not os.path.isdir(self.rootfs):
            return True
        cp = self.run_capture(['umount', '-R', self.rootfs], check=False)
        if cp.returncode == 0:
            self.log(f"unmounted {self.rootfs}")
            return True
        if 'not mounted' in cp.stderr:
            return True
        self.log(f"unmounting {self.rootfs} failed: {cp.stderr.strip()}")
        return False

    def teardown(self):
        """Release everything acquired so far, in reverse order.

        Every step is attempted whatever happened to the steps before it.
        Failures are logged, never raised.
        """
        with self.logged("cleaning up", "cleanup complete"):
            self._run_cleanup_hooks()
            try:
                unmounted = self.unmount_all()
            except Exception as e:
                self.log(f"unmounting failed: {e}")
                unmounted = False
            if self.device is not None:
                device, self.device = self.device, None
                try:
                    device.detach(self)
                except Exception as e:
                    self.log(f"detaching {device} failed: {e}")
        self._unmounted = unmounted
        return unmounted

    @contextlib.contextmanager
    def acquired(self):
        try:
            yield self
        finally:
            self.teardown()

    def close(self):
        if self._unmounted is None:
            self.teardown()
        if self._unmounted:
            shutil.rmtree(self.dir, ignore_errors=True)
        else:
            self.log(f"leaving {self.dir} in place, it still has mounts")
