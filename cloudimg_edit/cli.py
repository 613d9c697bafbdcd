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

import yaml

from .source import cloud_image_url


SHORT_OPTIONS = {
    'p': 'proposed',
    'l': 'lxd',
    }

# Names used in build-request files, as filed through the issue form.
REQUEST_KEYS = {
    'image': 'image_uri',
    'package': 'package_name',
    'format': 'image_format',
    }


class ArgException(Exception):
    pass


def _conv(ann, v):
    if ann is inspect._empty:
        return v
    if ann is bool:
        if isinstance(v, bool):
            return v
        return v.lower() in ["on", "yes", "true"]
    if ann is int:
        try:
            return int(v)
        except ValueError:
            raise ArgException(f"{v!r} is not a number")
    return v


def _params(func):
    return inspect.Signature.from_callable(func).parameters


def _set_option(kw, param, value):
    if param.name in kw:
        raise ArgException(f"multiple values for {param.name}")
    kw[param.name] = _conv(param.annotation, value)


def parse(func, raw_args):
    """Map a command line onto the arguments of `func`.

    Positional parameters of `func` are positional on the command line,
    keyword-only ones are --options (with _ spelled -).  Options annotated
    as bool are flags and take no value.
    """
    params = _params(func)
    positional = [
        p for p in params.values()
        if p.kind is inspect.Parameter.POSITIONAL_OR_KEYWORD]
    options = {
        p.name.replace('_', '-'): p for p in params.values()
        if p.kind is inspect.Parameter.KEYWORD_ONLY}

    kw = {}
    args = []
    it = iter(raw_args)
    for a in it:
        if a == '--':
            args.extend(it)
        elif a.startswith('--'):
            name, eq, value = a[2:].partition('=')
            try:
                p = options[name]
            except KeyError:
                raise ArgException(f"unknown option {a!r}")
            if p.annotation is bool and not eq:
                value = 'true'
            elif not eq:
                try:
                    value = next(it)
                except StopIteration:
                    raise ArgException(f"{a} needs a value")
            _set_option(kw, p, value)
        elif a.startswith('-') and len(a) > 1:
            for letter in a[1:]:
                try:
                    p = options[SHORT_OPTIONS[letter]]
                except KeyError:
                    raise ArgException(f"unknown option -{letter}")
                _set_option(kw, p, 'true')
        else:
            args.append(a)

    if len(args) > len(positional):
        raise ArgException("too many arguments")
    for p, a in zip(positional, args):
        kw[p.name] = _conv(p.annotation, a)
    return kw


def parse_key_values(text):
    data = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if '=' not in line:
            raise ArgException(f"cannot parse request line {line!r}")
        key, value = line.split('=', 1)
        data[key.strip()] = value.strip()
    return data


def request_args(func, data):
    params = _params(func)
    kw = {}
    for key, value in data.items():
        key = str(key).replace('-', '_')
        key = REQUEST_KEYS.get(key, key)
        if key == 'release':
            kw['image_uri'] = cloud_image_url(value)
            continue
        if key not in params:
            raise ArgException(f"unknown request key {key!r}")
        kw[key] = _conv(params[key].annotation, value)
    return kw


def load_request(func, path):
    """Read arguments for `func` from a build-request file.

    Either a YAML mapping or the key=value body of the build-request
    issue form.  Everything is read as strings, so release: 22.10 stays
    22.10.
    """
    with open(path) as fp:
        text = fp.read()
    try:
        data = yaml.load(text, Loader=yaml.BaseLoader)
    except yaml.YAMLError:
        data = None
    if not isinstance(data, dict):
        data = parse_key_values(text)
    return request_args(func, data)


def check_required(func, kw):
    for p in _params(func).values():
        if p.default is inspect._empty and p.name not in kw:
            raise ArgException(f"missing {p.name.replace('_', '-')}")
