"""okta-broker command line.

Examples:
  okta-broker add                       Store Okta credentials in the keyring
  okta-broker env dev                   Print export lines for profile 'dev'
  okta-broker cred-process dev          Print credential_process JSON for 'dev'

In ~/.aws/config:

  [okta]
  aws_saml_url = home/amazon_aws/0oa1234567/272

  [profile dev]
  role_arn = arn:aws:iam::123456789012:role/Developer
  credential_process = okta-broker cred-process dev
"""

import argparse
import getpass
import json
import logging
import sys

from . import __version__
from .config import FileConfig, parse_duration
from .errors import ConfigError, NotFoundError, OktaBrokerError
from .keyring_store import Item, KeyringStore
from .mfa import MFAConfig, prompt_stderr
from .okta import OKTA_SERVER_DEFAULT, OktaClient, OktaCreds, get_okta_domain
from .provider import OKTA_ACCOUNT_NAME, OKTA_SESSION_COOKIE_KEY, Provider, ProviderOptions

log = logging.getLogger("okta_broker")


def _duration_arg(value):
    try:
        return parse_duration(value)
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="okta-broker",
        description="Broker short-lived AWS credentials from an Okta SAML login.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n", 2)[2],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true",
                        help="Log debug information to stderr")
    parser.add_argument("--session-cache-single-item", action="store_true",
                        help="Keep all cached sessions in a single keyring item")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Store Okta credentials in the keyring")
    add.add_argument("--organization", help="Okta organization, e.g. 'corp' for corp.okta.com")
    add.add_argument("--region", choices=("us", "emea", "preview"),
                     help="Okta region (default: us)")
    add.add_argument("--domain", help="Okta domain, overrides --region")
    add.add_argument("--username", help="Okta username")

    for name, help_text in (("env", "Print AWS credential environment variables"),
                            ("cred-process", "Print credential_process JSON")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("profile", help="Profile from the AWS config file")
        cmd.add_argument("--session-ttl", type=_duration_arg,
                         help="Duration of the SAML session, e.g. 4h (default: profile session_ttl)")
        cmd.add_argument("--assume-role-ttl", type=_duration_arg,
                         help="Duration of the chained role, e.g. 1h (default: profile assume_role_ttl)")
        cmd.add_argument("--assume-role-arn", default="",
                         help="Role to assume with the SAML credentials")
        cmd.add_argument("--mfa-provider", help="MFA provider to use, e.g. OKTA or DUO")
        cmd.add_argument("--mfa-factor-type", help="MFA factor type to use, e.g. push")
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_add(args, keyring):
    organization = args.organization or prompt_stderr("Okta organization: ").strip()
    if args.domain:
        domain = args.domain
    elif args.region:
        domain = get_okta_domain(args.region)
    else:
        domain = OKTA_SERVER_DEFAULT
    username = args.username or prompt_stderr("Okta username: ").strip()
    password = getpass.getpass("Okta password: ")

    creds = OktaCreds(organization=organization, username=username,
                      password=password, domain=domain)
    creds.validate()

    # check the credentials before storing them
    OktaClient(creds, keyring, OKTA_SESSION_COOKIE_KEY).authenticate()

    keyring.set(Item(key=OKTA_ACCOUNT_NAME, data=creds.to_json(), label="okta credentials"))
    print(f"Added credentials for user {username}", file=sys.stderr)
    return 0


def _optional(profiles, profile, key):
    try:
        value, _ = profiles.get_value(profile, key)
    except NotFoundError:
        return ""
    return value


def build_provider(args, keyring):
    profiles = FileConfig.from_env().parse()
    if args.profile not in profiles:
        raise ConfigError(f"Profile {args.profile!r} not found in your AWS config")

    session_ttl = args.session_ttl
    if session_ttl is None:
        session_ttl = profiles.get_duration(args.profile, "session_ttl", None)
    assume_role_ttl = args.assume_role_ttl
    if assume_role_ttl is None:
        assume_role_ttl = profiles.get_duration(args.profile, "assume_role_ttl", None)

    options = ProviderOptions(
        profiles=profiles,
        mfa_config=MFAConfig(
            provider=args.mfa_provider or _optional(profiles, args.profile, "mfa_provider"),
            factor_type=args.mfa_factor_type or _optional(profiles, args.profile, "mfa_factor_type"),
        ),
        assume_role_arn=args.assume_role_arn,
        session_cache_single_item=args.session_cache_single_item,
    )
    if session_ttl is not None:
        options.session_duration = session_ttl
    if assume_role_ttl is not None:
        options.assume_role_duration = assume_role_ttl
    return Provider(keyring, args.profile, options)


def cmd_env(args, keyring):
    provider = build_provider(args, keyring)
    value = provider.retrieve()
    print(f"export AWS_ACCESS_KEY_ID={value.access_key_id}")
    print(f"export AWS_SECRET_ACCESS_KEY={value.secret_access_key}")
    print(f"export AWS_SESSION_TOKEN={value.session_token}")
    print(f"export AWS_SECURITY_TOKEN={value.session_token}")
    print(f"export AWS_OKTA_PROFILE={args.profile}")
    print(f"export AWS_OKTA_SESSION_EXPIRATION={int(provider.get_expiration().timestamp())}")
    return 0


def cmd_cred_process(args, keyring):
    value = build_provider(args, keyring).retrieve()
    print(json.dumps(value.to_credential_process()))
    return 0


COMMANDS = {
    "add": cmd_add,
    "env": cmd_env,
    "cred-process": cmd_cred_process,
}


def main(argv=None):
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return COMMANDS[args.command](args, KeyringStore(logger=log))
    except KeyboardInterrupt:
        return 1
    except (OktaBrokerError, ValueError) as exc:
        log.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
