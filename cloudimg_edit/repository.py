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

import enum
import glob
import os

from debian.deb822 import Deb822

from . import CommandError, CustomizeError


class RepositoryError(CustomizeError):
    """An extra package source could not be removed from the guest."""


ARCHIVE_URI = 'http://archive.ubuntu.com/ubuntu/'


class ProposedPocket:
    """The -proposed pocket of the Ubuntu archive."""

    def __init__(self, uri=ARCHIVE_URI, pocket='proposed',
                 components=('main', 'universe')):
        self.uri = uri
        self.pocket = pocket
        self.components = tuple(components)

    def __str__(self):
        return f'-{self.pocket} pocket of {self.uri}'

    def _args(self):
        args = ['--uri', self.uri, '--pocket', self.pocket]
        for component in self.components:
            args.extend(['--component', component])
        return args

    def add_cmd(self):
        return ['apt-add-repository', '--yes', '--no-update'] + self._args()

    def remove_cmd(self):
        return ['apt-add-repository', '--yes'] + self._args() + ['--remove']

    def qualify(self, package, release):
        return f'{package}/{release}-{self.pocket}'


class Ppa:
    """A third-party source apt-add-repository understands (ppa:owner/name)."""

    def __init__(self, name):
        self.name = name

    def __str__(self):
        return self.name

    def add_cmd(self):
        return ['apt-add-repository', '--no-update', '--yes', self.name]

    def remove_cmd(self):
        return ['apt-add-repository', '--yes', '--remove', self.name]

    def qualify(self, package, release):
        return package


class State(enum.Enum):
    IDLE = enum.auto()
    REPOSITORY_ENABLED = enum.auto()
    METADATA_REFRESHED = enum.auto()
    PACKAGE_INSTALLED = enum.auto()
    REPOSITORY_DISABLED = enum.auto()
    DONE = enum.auto()


class PackageInstaller:
    """Install one package in a guest, with extra sources enabled around it.

    Goes IDLE -> REPOSITORY_ENABLED -> METADATA_REFRESHED ->
    PACKAGE_INSTALLED -> REPOSITORY_DISABLED -> DONE and never back. The
    state only moves once the step it names has succeeded.
    Overrides that were enabled stay listed in `enabled` until they are
    removed, so disable_repositories() can be called again from teardown
    after a failed install and only undoes what is left.
    """

    def __init__(self, guest, release, overrides=()):
        self.guest = guest
        self.release = release
        self.overrides = list(overrides)
        self.enabled = []
        self.state = State.IDLE

    def _check(self, expected, new):
        if self.state is not expected:
            raise CustomizeError(
                f'cannot go to {new.name} from {self.state.name}')

    def enable_repositories(self):
        ctxt = self.guest.ctxt
        self._check(State.IDLE, State.REPOSITORY_ENABLED)
        for override in self.overrides:
            with ctxt.logged(f'enabling {override}'):
                self.guest.run(
                    override.add_cmd(), context=f'failed to add {override}')
            self.enabled.append(override)
        self.state = State.REPOSITORY_ENABLED

    def refresh_metadata(self):
        self._check(State.REPOSITORY_ENABLED, State.METADATA_REFRESHED)
        self.guest.run(
            ['apt-get', 'update', '-y'],
            context='failed to update package lists')
        self.state = State.METADATA_REFRESHED

    def package_spec(self, package):
        for override in self.overrides:
            package = override.qualify(package, self.release)
        return package

    def install(self, package):
        self._check(State.METADATA_REFRESHED, State.PACKAGE_INSTALLED)
        spec = self.package_spec(package)
        with self.guest.ctxt.logged(
                f'installing {spec}', f'package {spec!r} installed'):
            self.guest.run(
                ['apt-get', 'install', '-y', spec],
                context=f'failed to install package {spec}')
        self.state = State.PACKAGE_INSTALLED

    def disable_repositories(self):
        """Remove every enabled override, newest first.

        A removal that fails does not stop the others. Overrides that
        could not be removed stay in `enabled` and RepositoryError is
        raised once all of them have been tried.
        """
        ctxt = self.guest.ctxt
        failed = []
        errors = []
        for override in reversed(self.enabled):
            with ctxt.logged(f'disabling {override}'):
                try:
                    self.guest.run(
                        override.remove_cmd(),
                        context=f'failed to remove {override}')
                except CommandError as e:
                    ctxt.log(f'removing {override} failed')
                    failed.insert(0, override)
                    errors.append(e)
        self.enabled = failed
        if errors:
            raise RepositoryError(
                'could not remove '
                + ', '.join(str(override) for override in failed)
                ) from errors[0]
        if self.state is State.PACKAGE_INSTALLED:
            self.state = State.REPOSITORY_DISABLED

    def run(self, package):
        before = apt_sources(self.guest.rootfs)
        self.enable_repositories()
        self.refresh_metadata()
        self.install(package)
        self.disable_repositories()
        after = apt_sources(self.guest.rootfs)
        if after != before:
            self.guest.ctxt.log(
                'package sources changed: added '
                f'{sorted(after - before)}, removed {sorted(before - after)}')
        self._check(State.REPOSITORY_DISABLED, State.DONE)
        self.state = State.DONE


def _one_line_sources(path):
    entries = set()
    with open(path) as fp:
        for line in fp:
            words = line.split('#', 1)[0].split()
            if not words or words[0] not in ('deb', 'deb-src'):
                continue
            typ, rest = words[0], words[1:]
            if rest and rest[0].startswith('['):
                while rest and not rest[0].endswith(']'):
                    rest.pop(0)
                rest = rest[1:]
            if len(rest) < 2:
                continue
            uri, suite, components = rest[0], rest[1], rest[2:]
            for component in components or ['']:
                entries.add((typ, uri.rstrip('/'), suite, component))
    return entries


def _deb822_sources(path):
    entries = set()
    with open(path) as fp:
        for para in Deb822.iter_paragraphs(fp, use_apt_pkg=False):
            if para.get('Enabled', 'yes').lower() == 'no':
                continue
            for typ in para.get('Types', '').split():
                for uri in para.get('URIs', '').split():
                    for suite in para.get('Suites', '').split():
                        for component in para.get(
                                'Components', '').split() or ['']:
                            entries.add(
                                (typ, uri.rstrip('/'), suite, component))
    return entries


def apt_sources(rootfs):
    """Every (type, uri, suite, component) the guest's apt will use."""
    apt = os.path.join(rootfs, 'etc/apt')
    entries = set()
    for path in [os.path.join(apt, 'sources.list')] + sorted(
            glob.glob(os.path.join(apt, 'sources.list.d/*.list'))):
        if os.path.exists(path):
            entries |= _one_line_sources(path)
    deb822_files = glob.glob(os.path.join(apt, 'sources.list.d/*.sources'))
    for path in sorted(deb822_files):
        entries |= _deb822_sources(path)
    return entries
