"""Tests for enabling package sources and installing in the guest."""

import os

import pytest

from cloudimg_edit import CommandError, CustomizeError
from cloudimg_edit.guest import Guest
from cloudimg_edit.repository import (
    PackageInstaller,
    Ppa,
    ProposedPocket,
    RepositoryError,
    State,
    apt_sources,
)


UBUNTU_SOURCES = '''\
Types: deb
URIs: http://archive.ubuntu.com/ubuntu/
Suites: noble noble-updates noble-backports
Components: main restricted universe multiverse
Signed-By: /usr/share/keyrings/ubuntu-archive-keyring.gpg

Types: deb
URIs: http://security.ubuntu.com/ubuntu/
Suites: noble-security
Components: main restricted universe multiverse
Signed-By: /usr/share/keyrings/ubuntu-archive-keyring.gpg
'''

PROPOSED_SOURCES = '''\
Types: deb
URIs: http://archive.ubuntu.com/ubuntu/
Suites: noble-proposed
Components: main universe
'''


def apt_calls(runner):
    calls = []
    for cmd in runner.commands('systemd-nspawn'):
        calls.append(cmd[cmd.index('--setenv=LANG=C.UTF-8') + 1:])
    return calls


@pytest.fixture
def guest(ctxt, noble_rootfs, make_file):
    make_file(
        os.path.join(noble_rootfs, 'etc/apt/sources.list.d/ubuntu.sources'),
        UBUNTU_SOURCES)
    return Guest(ctxt, noble_rootfs)


@pytest.fixture
def proposed_effects(runner, guest, make_file):
    """Make apt-add-repository really add and remove a sources file."""
    path = os.path.join(
        guest.rootfs, 'etc/apt/sources.list.d/proposed.sources')
    seen = {}

    def effect(cmd):
        if '--remove' in cmd:
            os.unlink(path)
        else:
            make_file(path, PROPOSED_SOURCES)

    def during_install(cmd):
        seen['present'] = os.path.exists(path)

    runner.on(lambda cmd: 'apt-add-repository' in cmd, effect)
    runner.on(lambda cmd: 'install' in cmd, during_install)
    return seen


class TestOverrides:

    def test_proposed_commands_mirror_each_other(self):
        pocket = ProposedPocket()
        assert pocket.add_cmd() == [
            'apt-add-repository', '--yes', '--no-update',
            '--uri', 'http://archive.ubuntu.com/ubuntu/',
            '--pocket', 'proposed',
            '--component', 'main', '--component', 'universe',
            ]
        assert pocket.remove_cmd() == [
            'apt-add-repository', '--yes',
            '--uri', 'http://archive.ubuntu.com/ubuntu/',
            '--pocket', 'proposed',
            '--component', 'main', '--component', 'universe',
            '--remove',
            ]

    def test_proposed_qualifies_package(self):
        assert ProposedPocket().qualify('curl', 'noble') == \
            'curl/noble-proposed'

    def test_ppa_commands(self):
        ppa = Ppa('ppa:owner/name')
        assert ppa.add_cmd() == [
            'apt-add-repository', '--no-update', '--yes', 'ppa:owner/name']
        assert ppa.remove_cmd() == [
            'apt-add-repository', '--yes', '--remove', 'ppa:owner/name']
        assert ppa.qualify('htop', 'noble') == 'htop'


class TestPackageInstaller:

    def test_plain_install(self, runner, guest):
        installer = PackageInstaller(guest, 'noble')
        installer.run('htop')
        assert apt_calls(runner) == [
            ['apt-get', 'update', '-y'],
            ['apt-get', 'install', '-y', 'htop'],
            ]
        assert installer.state is State.DONE

    def test_proposed_install_sequence(self, runner, guest, proposed_effects):
        installer = PackageInstaller(guest, 'noble', [ProposedPocket()])
        installer.run('curl')
        calls = apt_calls(runner)
        assert calls[0][:3] == ['apt-add-repository', '--yes', '--no-update']
        assert calls[1] == ['apt-get', 'update', '-y']
        assert calls[2] == ['apt-get', 'install', '-y', 'curl/noble-proposed']
        assert calls[3][-1] == '--remove'
        assert proposed_effects['present'] is True

    def test_sources_symmetric(self, runner, guest, proposed_effects):
        before = apt_sources(guest.rootfs)
        PackageInstaller(guest, 'noble', [ProposedPocket()]).run('curl')
        assert apt_sources(guest.rootfs) == before
        assert ('deb', 'http://archive.ubuntu.com/ubuntu', 'noble-proposed',
                'main') not in before

    def test_proposed_and_ppa_removed_in_reverse(self, runner, guest):
        installer = PackageInstaller(
            guest, 'noble', [ProposedPocket(), Ppa('ppa:owner/name')])
        installer.run('htop')
        calls = apt_calls(runner)
        assert calls[-2] == [
            'apt-add-repository', '--yes', '--remove', 'ppa:owner/name']
        assert calls[-1][-1] == '--remove'
        assert '--pocket' in calls[-1]
        assert ['apt-get', 'install', '-y', 'htop/noble-proposed'] in calls

    def test_install_failure_leaves_source_enabled(self, runner, guest):
        runner.fail(lambda cmd: 'install' in cmd, returncode=100,
                    stderr='E: Unable to locate package nope')
        installer = PackageInstaller(guest, 'noble', [ProposedPocket()])
        with pytest.raises(CommandError) as info:
            installer.run('nope')
        assert 'Unable to locate package' in info.value.stderr
        assert len(installer.enabled) == 1
        assert installer.state is State.METADATA_REFRESHED

        installer.disable_repositories()
        installer.disable_repositories()
        removes = [c for c in apt_calls(runner) if '--remove' in c]
        assert len(removes) == 1
        assert installer.enabled == []
        assert installer.state is State.METADATA_REFRESHED

    def test_failed_removal_does_not_stop_the_others(self, runner, guest):
        runner.fail(
            lambda cmd: '--remove' in cmd and 'ppa:x/y' in cmd,
            stderr='could not reach launchpad')
        pocket, ppa = ProposedPocket(), Ppa('ppa:x/y')
        installer = PackageInstaller(guest, 'noble', [pocket, ppa])
        with pytest.raises(RepositoryError, match='ppa:x/y') as info:
            installer.run('htop')
        assert isinstance(info.value.__cause__, CommandError)
        removes = [c for c in apt_calls(runner) if '--remove' in c]
        assert len(removes) == 2
        assert '--pocket' in removes[1]
        assert installer.enabled == [ppa]
        assert installer.state is State.PACKAGE_INSTALLED

        runner.calls.clear()
        with pytest.raises(RepositoryError):
            installer.disable_repositories()
        assert apt_calls(runner) == [ppa.remove_cmd()]

    def test_states_only_move_forward(self, runner, guest):
        installer = PackageInstaller(guest, 'noble')
        with pytest.raises(CustomizeError):
            installer.install('htop')
        installer.enable_repositories()
        installer.refresh_metadata()
        with pytest.raises(CustomizeError):
            installer.enable_repositories()
        installer.install('htop')
        assert installer.state is State.PACKAGE_INSTALLED
        installer.disable_repositories()
        assert installer.state is State.REPOSITORY_DISABLED

    def test_failed_enable_is_not_undone(self, runner, guest):
        runner.fail(lambda cmd: 'apt-add-repository' in cmd)
        installer = PackageInstaller(guest, 'noble', [Ppa('ppa:x/y')])
        with pytest.raises(CommandError):
            installer.run('htop')
        assert installer.enabled == []
        assert installer.state is State.IDLE


class TestAptSources:

    def test_deb822(self, tmp_path, make_file):
        make_file(
            str(tmp_path / 'etc/apt/sources.list.d/ubuntu.sources'),
            UBUNTU_SOURCES)
        entries = apt_sources(str(tmp_path))
        assert ('deb', 'http://archive.ubuntu.com/ubuntu', 'noble-updates',
                'multiverse') in entries
        assert ('deb', 'http://security.ubuntu.com/ubuntu', 'noble-security',
                'main') in entries
        assert len(entries) == 16

    def test_disabled_deb822_paragraph(self, tmp_path, make_file):
        make_file(
            str(tmp_path / 'etc/apt/sources.list.d/off.sources'),
            PROPOSED_SOURCES + 'Enabled: no\n')
        assert apt_sources(str(tmp_path)) == set()

    def test_one_line_format(self, tmp_path, make_file):
        make_file(str(tmp_path / 'etc/apt/sources.list'), '''\
# comment
deb http://archive.ubuntu.com/ubuntu/ jammy main restricted
deb [arch=amd64 signed-by=/k.gpg] https://ppa.launchpadcontent.net/o/n/ubuntu jammy main
deb-src http://archive.ubuntu.com/ubuntu jammy-proposed universe # trailing
''')
        assert apt_sources(str(tmp_path)) == {
            ('deb', 'http://archive.ubuntu.com/ubuntu', 'jammy', 'main'),
            ('deb', 'http://archive.ubuntu.com/ubuntu', 'jammy', 'restricted'),
            ('deb', 'https://ppa.launchpadcontent.net/o/n/ubuntu', 'jammy',
             'main'),
            ('deb-src', 'http://archive.ubuntu.com/ubuntu', 'jammy-proposed',
             'universe'),
            }

    def test_no_apt_config(self, tmp_path):
        assert apt_sources(str(tmp_path)) == set()
