"""AWS config file parsing and profile value resolution.

Profiles are read from the shared AWS config file (``~/.aws/config`` or
``$AWS_CONFIG_FILE``).  A value is looked up in the requested profile, then in
its ``source_profile`` (one hop only), then in the ``okta`` section which holds
settings shared by every profile.
"""

import configparser
import datetime
import logging
import os
import re

from .errors import ConfigError, NotFoundError

DEFAULT_AWS_CONFIG_PATH = os.path.join("~", ".aws", "config")
OKTA_PROFILE = "okta"

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_UNITS = {"h": "hours", "m": "minutes", "s": "seconds"}

log = logging.getLogger(__name__)


def get_path_to_aws_config_file():
    """Return the AWS config path, honouring ``$AWS_CONFIG_FILE``."""
    path = os.environ.get("AWS_CONFIG_FILE")
    if not path:
        path = os.path.expanduser(DEFAULT_AWS_CONFIG_PATH)
    return path


def parse_duration(value):
    """Parse a duration such as ``12h``, ``90m`` or ``1h30m`` into a timedelta."""
    text = value.strip()
    if not text:
        raise ConfigError("empty duration")
    pos = 0
    total = datetime.timedelta()
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        amount, unit = match.groups()
        total += datetime.timedelta(**{_DURATION_UNITS[unit]: float(amount)})
        pos = match.end()
    if pos != len(text):
        raise ConfigError(f"invalid duration {value!r}")
    return total


class Profiles(dict):
    """Mapping of profile name to its ``{key: value}`` settings."""

    def get_value(self, profile, key):
        """Return ``(value, resolved_profile)`` for *key*.

        Lookup order is *profile*, then its direct ``source_profile``, then
        ``okta``.  A ``source_profile`` of the source profile is not followed.
        Raises NotFoundError naming ``okta``, the last profile consulted, when
        no step supplies the key.
        """
        conf = self.get(profile, {})
        if key in conf:
            return conf[key], profile

        parent = conf.get("source_profile")
        if parent:
            parent_conf = self.get(parent, {})
            if key in parent_conf:
                return parent_conf[key], parent

        okta_conf = self.get(OKTA_PROFILE, {})
        if key in okta_conf:
            return okta_conf[key], OKTA_PROFILE

        raise NotFoundError(key, OKTA_PROFILE)

    def get_duration(self, profile, key, default):
        """Return *key* parsed as a duration, or *default* when it is unset."""
        try:
            value, resolved = self.get_value(profile, key)
        except NotFoundError:
            return default
        log.debug("Using %s=%s from profile %s", key, value, resolved)
        return parse_duration(value)


def source_profile(profile, profiles):
    """Return the ``source_profile`` of *profile*, or *profile* itself."""
    return profiles.get(profile, {}).get("source_profile") or profile


def _profile_name(section):
    if section.startswith("profile "):
        return section[len("profile "):].strip()
    return section


class FileConfig:
    """Config source backed by an ini file or an in-memory ini document."""

    def __init__(self, path=None, text=None):
        self.path = path
        self.text = text

    @classmethod
    def from_env(cls):
        """Use ``$AWS_CONFIG_FILE`` or ``~/.aws/config``; a missing file is empty."""
        path = get_path_to_aws_config_file()
        if not os.path.exists(path):
            log.debug("No AWS config file at %s", path)
            path = None
        return cls(path=path)

    def _read(self):
        parser = configparser.ConfigParser(interpolation=None)
        if self.text is not None:
            parser.read_string(self.text, source="<string>")
        else:
            with open(self.path, encoding="utf-8") as fh:
                parser.read_file(fh)
        return parser

    def parse(self):
        """Return the Profiles found in the source.

        Raises ConfigError when the source cannot be read or is malformed.
        """
        if self.path is None and self.text is None:
            return Profiles()

        log.debug("Parsing config file %s", self.path or "<string>")
        try:
            parser = self._read()
        except (OSError, configparser.Error) as exc:
            raise ConfigError(
                f"Error parsing config file {self.path or '<string>'!r}: {exc}"
            ) from exc

        profiles = Profiles({OKTA_PROFILE: {}})
        for section in parser.sections():
            profiles[_profile_name(section)] = dict(parser.items(section, raw=True))
        return profiles
