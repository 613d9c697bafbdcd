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

import subprocess

__version__ = '0.1.0'


class CustomizeError(Exception):
    pass


class CommandError(subprocess.CalledProcessError):
    """A command exited non-zero (or could not be started at all).

    `context` says what we were trying to do when it failed.
    """

    def __init__(self, returncode, cmd, output=None, stderr=None, *,
                 context=None):
        super().__init__(returncode, cmd, output, stderr)
        self.context = context

    def __str__(self):
        msg = super().__str__()
        if self.context:
            msg = f'{self.context}: {msg}'
        if self.stdout:
            msg += f'\nStdout: {self.stdout.strip()}'
        if self.stderr:
            msg += f'\nStderr: {self.stderr.strip()}'
        return msg


def run(cmd, check=True, context=None, **kw):
    try:
        cp = subprocess.run(cmd, check=False, **kw)
    except FileNotFoundError as e:
        raise CommandError(127, cmd, stderr=str(e), context=context) from e
    if check and cp.returncode != 0:
        raise CommandError(
            cp.returncode, cmd, cp.stdout, cp.stderr, context=context)
    return cp


def run_capture(cmd, **kw):
    return run(
        cmd, encoding='utf-8', stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        **kw)
