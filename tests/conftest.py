"""Shared fixtures.

Nothing here touches real block devices or mounts: `subprocess.run` is
replaced by a FakeRunner that records every command line and answers
with canned output or failures.
"""

import os
import subprocess

import pytest

from cloudimg_edit.context import EditContext


class FakeRunner:
    """Stands in for subprocess.run.

    Rules are checked in the order they were added; a rule matches either
    a tuple prefix of the command line or a predicate on it.
    """

    def __init__(self):
        self.calls = []
        self._rules = []

    def _add(self, match, returncode=0, stdout='', stderr='', effect=None):
        if not callable(match):
            prefix = list(match)

            def match(cmd):
                return cmd[:len(prefix)] == prefix
        self._rules.append((match, returncode, stdout, stderr, effect))

    def output(self, match, stdout):
        self._add(match, stdout=stdout)

    def fail(self, match, returncode=1, stdout='', stderr=''):
        self._add(match, returncode=returncode, stdout=stdout, stderr=stderr)

    def on(self, match, effect):
        self._add(match, effect=effect)

    def __call__(self, cmd, check=False, **kw):
        cmd = list(cmd)
        self.calls.append(cmd)
        captured = 'stdout' in kw
        for match, returncode, stdout, stderr, effect in self._rules:
            if match(cmd):
                if effect is not None:
                    effect(cmd)
                break
        else:
            returncode, stdout, stderr = 0, '', ''
        if not captured:
            stdout = stderr = None
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def commands(self, program):
        return [c for c in self.calls if c[0] == program]

    def index(self, predicate):
        for i, cmd in enumerate(self.calls):
            if predicate(cmd):
                return i
        raise AssertionError('no matching command was run')


@pytest.fixture
def runner(mocker):
    fake = FakeRunner()
    mocker.patch('subprocess.run', side_effect=fake)
    return fake


@pytest.fixture
def ctxt(tmp_path):
    c = EditContext(workdir=str(tmp_path))
    yield c


def write_file(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as fp:
        fp.write(content)


NOBLE_OS_RELEASE = '''\
PRETTY_NAME="Ubuntu 24.04.1 LTS"
NAME="Ubuntu"
VERSION_ID="24.04"
VERSION="24.04.1 LTS (Noble Numbat)"
VERSION_CODENAME=noble
ID=ubuntu
'''


@pytest.fixture
def noble_rootfs(ctxt):
    write_file(os.path.join(ctxt.rootfs, 'etc/os-release'), NOBLE_OS_RELEASE)
    return ctxt.rootfs


@pytest.fixture
def make_file():
    return write_file
