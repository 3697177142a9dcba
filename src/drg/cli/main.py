"""Command-line interface for drg."""

from __future__ import annotations

import argparse
import io
import logging
import os
import shlex
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Any, Callable, Sequence, TextIO

import yaml

from drg import admin, tokens
from drg.applications import ApplicationOperations
from drg.apply import apply
from drg.certificates import CERT_VALIDITY_DAYS, IssuedCertificate, SignAlgo, write_pem
from drg.cli import tables
from drg.cli.config import (
    APP_ENV_VAR,
    CONTEXT_ENV_VAR,
    Context,
    ContextStore,
    load_config,
    save_config,
)
from drg.client import DrogueClient
from drg.command import send_command
from drg.crypto.keys import load_key_input
from drg.devices import DeviceOperations
from drg.endpoints import (
    COMPATIBLE_DROGUE_VERSION,
    get_authenticated_endpoints,
    get_cloud_version,
    normalize_url,
    select_endpoint,
)
from drg.errors import ConfigIssueError, DrogueError, InvalidInputError, NotFoundError
from drg.openid import (
    browser_login,
    context_from_access_token,
    parse_access_token,
    refresh_token_login,
    verify_token_validity,
)
from drg.operations import load_document_file, parse_json_argument, resource_name
from drg.outcome import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    Result,
    SuccessWithJsonData,
    SuccessWithMessage,
    display,
    sanitize_error_text,
)
from drg.stream import stream_app

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2

VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG)
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
PROMPT = "drg 🚀 "
DEFAULT_CONTEXT_NAME = "default"


def _cli_version() -> str:
    try:
        return pkg_version("drg")
    except PackageNotFoundError:
        return "0.0.0+local"


def _global_options() -> argparse.ArgumentParser:
    # Defaults are suppressed so the flags work before or after any subcommand
    # without a later parser resetting a value given earlier.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-C",
        "--config",
        default=argparse.SUPPRESS,
        help="Path to the drg config file. Can be set with DRGCFG environment variable.",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=argparse.SUPPRESS,
        help="Enable verbose output. Repeat for more detail (-vvv).",
    )
    common.add_argument(
        "-c",
        "--context",
        default=argparse.SUPPRESS,
        help="Context to use. Can be set with DRG_CONTEXT environment variable.",
    )
    common.add_argument(
        "-o",
        "--output",
        choices=("json", "wide"),
        default=argparse.SUPPRESS,
        help="Output format. Default is human readable text",
    )
    return common


def _app_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-a",
        "--app",
        "--application",
        dest="app",
        default=None,
        help="Application id. Can be set with DRG_APP environment variable.",
    )


def _spec_or_file(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("-s", "--spec", "--data", dest="spec", default=None, help="The spec for the resource, as JSON")
    group.add_argument(
        "-f",
        "--filename",
        default=None,
        help="File containing the complete resource to create or update, including metadata",
    )


def _cert_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--algo",
        choices=[algo.value for algo in SignAlgo.generatable()],
        default=None,
        help="Algorithm used to generate key pair.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=CERT_VALIDITY_DAYS,
        help=f"Number of days the certificate should be valid for. [default: {CERT_VALIDITY_DAYS}]",
    )
    parser.add_argument("--key-input", default=None, help="Private key to use instead of generating one")
    parser.add_argument("--key-output", default=None, help="Write the generated private key to this file")


def _build_parser() -> argparse.ArgumentParser:
    common = _global_options()
    parser = argparse.ArgumentParser(prog="drg", description="Drogue Command Line Tool", parents=[common])
    parser.add_argument("--version", action="version", version=f"drg {_cli_version()}")
    parser.add_argument("--interactive", action="store_true", help="Run drg as an interactive shell")

    sub = parser.add_subparsers(dest="command")

    def add(subparsers: Any, name: str, **kwargs: Any) -> argparse.ArgumentParser:
        return subparsers.add_parser(name, parents=[common], **kwargs)

    # create
    create = add(sub, "create", aliases=["add"], help="Create a resource.")
    create_sub = create.add_subparsers(dest="resource", required=True)
    create_app = add(create_sub, "app", aliases=["application"], help="Create an application")
    create_app.add_argument("id", nargs="?", default=None)
    _spec_or_file(create_app)
    create_device = add(create_sub, "device", help="Create a device")
    create_device.add_argument("id", nargs="?", default=None)
    _app_flag(create_device)
    _spec_or_file(create_device)
    create_device.add_argument(
        "--cert",
        action="store_true",
        help="Add the subject of the device certificate as an alias of the device",
    )
    create_member = add(create_sub, "member", aliases=["members"], help="Allow a member to access an application")
    create_member.add_argument("user")
    create_member.add_argument("--role", required=True, choices=[role.value for role in admin.Role])
    _app_flag(create_member)
    create_app_cert = add(create_sub, "app-cert", help="Create a trust-anchor for an application.")
    _app_flag(create_app_cert)
    _cert_options(create_app_cert)
    create_device_cert = add(
        create_sub,
        "device-cert",
        help="Generate and sign a device certificate using the application's private key.",
    )
    create_device_cert.add_argument("id")
    _app_flag(create_device_cert)
    create_device_cert.add_argument("--ca-key", required=True, help="Private key of the application trust anchor")
    create_device_cert.add_argument("--cert-output", default=None, help="Write the device certificate to this file")
    _cert_options(create_device_cert)
    create_token = add(create_sub, "token", aliases=["tokens"], help="Generate a new API access token")
    create_token.add_argument("--description", default=None)

    # delete
    delete = add(sub, "delete", aliases=["remove"], help="Delete a resource.")
    delete_sub = delete.add_subparsers(dest="resource", required=True)
    delete_app = add(delete_sub, "app", aliases=["application"])
    delete_app.add_argument("id")
    delete_app.add_argument("--ignore-missing", action="store_true")
    delete_device = add(delete_sub, "device")
    delete_device.add_argument("id")
    _app_flag(delete_device)
    delete_device.add_argument("--ignore-missing", action="store_true")
    delete_member = add(delete_sub, "member", aliases=["members"])
    delete_member.add_argument("user")
    _app_flag(delete_member)
    delete_token = add(delete_sub, "token", aliases=["tokens"])
    delete_token.add_argument("prefix")

    # edit
    edit = add(sub, "edit", help="Edit a resource.")
    edit_sub = edit.add_subparsers(dest="resource", required=True)
    edit_app = add(edit_sub, "app", aliases=["application"])
    edit_app.add_argument("id")
    _spec_or_file(edit_app)
    edit_device = add(edit_sub, "device")
    edit_device.add_argument("id")
    _app_flag(edit_device)
    _spec_or_file(edit_device)
    edit_member = add(edit_sub, "member", aliases=["members"])
    _app_flag(edit_member)

    # get
    get = add(sub, "get", help="Display one or many resources.")
    get_sub = get.add_subparsers(dest="resource", required=True)
    get_app = add(get_sub, "app", aliases=["apps", "application", "applications"])
    get_app.add_argument("id", nargs="?", default=None)
    get_app.add_argument("-l", "--labels", default=None, help="Label selector, e.g. foo=bar,baz")
    get_device = add(get_sub, "device", aliases=["devices"])
    get_device.add_argument("id", nargs="?", default=None)
    _app_flag(get_device)
    get_device.add_argument("-l", "--labels", default=None, help="Label selector, e.g. foo=bar,baz")
    get_member = add(get_sub, "member", aliases=["members"])
    _app_flag(get_member)
    add(get_sub, "token", aliases=["tokens"])

    # set
    set_cmd = add(sub, "set", help="Set a device property.")
    set_sub = set_cmd.add_subparsers(dest="resource", required=True)
    set_gateway = add(set_sub, "gateway", help="Set a gateway allowed to act on behalf of a device")
    set_gateway.add_argument("id")
    set_gateway.add_argument("gateway")
    _app_flag(set_gateway)
    set_password = add(set_sub, "password", help="Set a password credential for a device")
    set_password.add_argument("id")
    set_password.add_argument("password")
    set_password.add_argument("-u", "--username", default=None)
    _app_flag(set_password)
    set_alias = add(set_sub, "alias", help="Add an alias to a device")
    set_alias.add_argument("id")
    set_alias.add_argument("alias")
    _app_flag(set_alias)
    set_default_app = add(set_sub, "default-app", help="Set the default application of the context")
    set_default_app.add_argument("app_id")

    # label
    label = add(sub, "label", help="Add labels to a resource.")
    label_sub = label.add_subparsers(dest="resource", required=True)
    label_app = add(label_sub, "app", aliases=["application"])
    label_app.add_argument("id")
    label_app.add_argument("labels", nargs="+", metavar="key=value")
    label_device = add(label_sub, "device")
    label_device.add_argument("id")
    label_device.add_argument("labels", nargs="+", metavar="key=value")
    _app_flag(label_device)

    # apply
    apply_cmd = add(sub, "apply", help="Create or update resources from files.")
    apply_cmd.add_argument(
        "-f",
        "--filename",
        dest="paths",
        action="append",
        required=True,
        help="File or directory to apply, or - to read from stdin. Repeatable.",
    )

    # transfer
    transfer = add(sub, "transfer", help="Transfer application ownership.")
    transfer_sub = transfer.add_subparsers(dest="transfer_command", required=True)
    transfer_init = add(transfer_sub, "init", help="Initiate the transfer of an application")
    transfer_init.add_argument("user")
    _app_flag(transfer_init)
    transfer_accept = add(transfer_sub, "accept", help="Accept an application transfer")
    transfer_accept.add_argument("id")
    transfer_cancel = add(transfer_sub, "cancel", help="Cancel an application transfer")
    transfer_cancel.add_argument("id")

    # login
    login = add(sub, "login", help="Log in to a Drogue Cloud instance.")
    login.add_argument("url")
    login_token = login.add_mutually_exclusive_group()
    login_token.add_argument("-t", "--token", default=None, help="Refresh token to use instead of a browser login")
    login_token.add_argument("--access-token", default=None, help="Access token, formatted as username:token")
    login.add_argument(
        "-k",
        "--keep-current",
        action="store_true",
        help="Do not switch the active context to the new one",
    )

    # whoami
    whoami = add(sub, "whoami", help="Show the active context.")
    whoami.add_argument("--token", action="store_true", help="Print the access token")
    whoami_sub = whoami.add_subparsers(dest="whoami_command")
    whoami_endpoints = add(whoami_sub, "endpoints", aliases=["endpoint"], help="List the cloud endpoints")
    whoami_endpoints.add_argument("service", nargs="?", default=None)

    # config
    config = add(sub, "config", aliases=["context"], help="Manage drg contexts.")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    add(config_sub, "create")
    add(config_sub, "list", help="List context names")
    config_show = add(config_sub, "show", help="Show the configuration")
    config_show.add_argument("--active", action="store_true", help="Show only the active context")
    config_default_context = add(config_sub, "default-context", help="Set the active context")
    config_default_context.add_argument("name")
    config_delete = add(config_sub, "delete", aliases=["remove"], help="Delete a context")
    config_delete.add_argument("name")
    config_default_app = add(config_sub, "default-app", help="Set the default application")
    config_default_app.add_argument("app_id")
    config_rename = add(config_sub, "rename", help="Rename a context")
    config_rename.add_argument("old")
    config_rename.add_argument("new")
    config_default_algo = add(config_sub, "default-algo", help="Set the default key algorithm")
    config_default_algo.add_argument("algo", choices=[algo.value for algo in SignAlgo.generatable()])

    # command
    command = add(sub, "command", aliases=["cmd"], help="Send a command to a device.")
    command.add_argument("device")
    command.add_argument("command_name", metavar="command")
    _app_flag(command)
    payload = command.add_mutually_exclusive_group(required=True)
    payload.add_argument("-p", "--payload", default=None, help="JSON payload")
    payload.add_argument("-f", "--filename", default=None, help="File containing a JSON payload")

    # stream
    stream = add(sub, "stream", help="Stream application events.")
    _app_flag(stream)
    stream.add_argument("--device", default=None, help="Only show events sent by this device")
    stream.add_argument("-n", "--count", type=int, default=None, help="Exit after receiving this many messages")
    stream.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")

    add(sub, "version", help="Print version information.")
    add(sub, "exit")
    return parser


def _option(args: argparse.Namespace, name: str, default: Any = None) -> Any:
    return getattr(args, name, default)


def _configure_logging(verbosity: int, stderr: TextIO) -> None:
    level = VERBOSITY_LEVELS[min(verbosity, len(VERBOSITY_LEVELS) - 1)]
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=stderr, force=True)


def _print_error(stderr: TextIO, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {sanitize_error_text(message)}", file=stderr)
    return code


def _render(
    operation: Callable[[], Result],
    *,
    json_output: bool,
    stdout: TextIO,
    stderr: TextIO,
    pretty: Callable[[Any, TextIO], None] | None = None,
) -> int:
    try:
        result = operation()
    except DrogueError as exc:
        result = exc
    return display(result, json_output=json_output, stdout=stdout, stderr=stderr, pretty=pretty)


def _save_if_changed(store: ContextStore, config_path: str | None, code: int, stderr: TextIO) -> int:
    if not store.changed:
        return code
    try:
        save_config(store, config_path)
    except ConfigIssueError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_CONFIG_ERROR)
    return code


def _resolve_app(args: argparse.Namespace, context: Context) -> str:
    app = _option(args, "app") or os.getenv(APP_ENV_VAR)
    if app:
        return app
    if context.default_app:
        logger.debug("Using default app %s", context.default_app)
        return context.default_app
    raise NotFoundError("Missing app argument and no default app specified in config file.")


def _labels(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def _spec_argument(args: argparse.Namespace) -> Any:
    raw = _option(args, "spec")
    return parse_json_argument(raw, "spec") if raw is not None else None


def _document_argument(args: argparse.Namespace) -> dict | None:
    path = _option(args, "filename")
    return load_document_file(path) if path else None


def _name_from(args: argparse.Namespace, document: dict | None) -> str:
    if args.id:
        return args.id
    if document is None:
        raise InvalidInputError("a resource id or a file with metadata.name is required")
    return resource_name(document)


def _yaml_printer(data: Any, stdout: TextIO) -> None:
    print(yaml.safe_dump(data, sort_keys=False).rstrip("\n"), file=stdout)


def _read_file_bytes(path: str, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise InvalidInputError(f"cannot read {what} {path}: {exc}") from exc


def _key_material(args: argparse.Namespace, context: Context) -> tuple[Any, SignAlgo | None]:
    if args.key_input:
        key, algorithm = load_key_input(args.key_input)
        return key, algorithm
    if args.algo:
        return None, SignAlgo(args.algo)
    if context.default_algo:
        logger.debug("Using default signature algorithm: %s", context.default_algo.value)
        return None, context.default_algo
    return None, None


def _certificate_outcome(
    outcome: SuccessWithMessage,
    issued: IssuedCertificate,
    *,
    key_output: str | None,
    cert_output: str | None,
    include_certificate: bool,
    json_output: bool,
    stdout: TextIO,
) -> Result:
    if json_output:
        data: dict[str, Any] = {"status": "success", "message": outcome.message}
        if include_certificate:
            if cert_output:
                write_pem(issued.certificate_pem, cert_output, stdout=io.StringIO())
                data["certificate_file"] = cert_output
            else:
                data["certificate"] = issued.certificate_pem.decode("ascii")
        if issued.private_key_pem is not None:
            if key_output:
                write_pem(issued.private_key_pem, key_output, stdout=io.StringIO(), secret=True)
                data["private_key_file"] = key_output
            else:
                data["private_key"] = issued.private_key_pem.decode("ascii")
        return SuccessWithJsonData(data)

    if include_certificate:
        write_pem(issued.certificate_pem, cert_output, stdout=stdout, label="Certificate")
    if issued.private_key_pem is not None:
        write_pem(issued.private_key_pem, key_output, stdout=stdout, secret=True, label="Private key")
    return outcome


def _run_create(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    resource = args.resource

    def run() -> Result:
        if resource in {"app", "application"}:
            document = _document_argument(args)
            return ApplicationOperations(client).create(
                _name_from(args, document), spec=_spec_argument(args), document=document
            )
        if resource == "device":
            document = _document_argument(args)
            return DeviceOperations(client, _resolve_app(args, context)).create(
                _name_from(args, document),
                spec=_spec_argument(args),
                document=document,
                certificate_alias=args.cert,
            )
        if resource in {"member", "members"}:
            return admin.member_add(client, _resolve_app(args, context), args.user, admin.Role(args.role))
        if resource in {"token", "tokens"}:
            return tokens.create_token(client, args.description)
        if resource == "app-cert":
            app = _resolve_app(args, context)
            key, algorithm = _key_material(args, context)
            outcome, issued = ApplicationOperations(client).add_trust_anchor(
                app, days=args.days, algorithm=algorithm, key=key
            )
            return _certificate_outcome(
                outcome,
                issued,
                key_output=args.key_output,
                cert_output=None,
                include_certificate=False,
                json_output=json_output,
                stdout=stdout,
            )
        app = _resolve_app(args, context)
        key, algorithm = _key_material(args, context)
        ca_key = _read_file_bytes(args.ca_key, "CA key")
        anchor = ApplicationOperations(client).get_trust_anchor(app)
        outcome, issued = DeviceOperations(client, app).create_certificate(
            args.id,
            ca_key=ca_key,
            ca_certificate=anchor.certificate_pem(),
            days=args.days,
            algorithm=algorithm,
            key=key,
        )
        return _certificate_outcome(
            outcome,
            issued,
            key_output=args.key_output,
            cert_output=args.cert_output,
            include_certificate=True,
            json_output=json_output,
            stdout=stdout,
        )

    pretty = tables.created_token if resource in {"token", "tokens"} else None
    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr, pretty=pretty)


def _run_delete(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    resource = args.resource

    def run() -> Result:
        if resource in {"app", "application"}:
            return ApplicationOperations(client).delete(args.id, ignore_missing=args.ignore_missing)
        if resource == "device":
            return DeviceOperations(client, _resolve_app(args, context)).delete(
                args.id, ignore_missing=args.ignore_missing
            )
        if resource in {"member", "members"}:
            return admin.member_delete(client, _resolve_app(args, context), args.user)
        return tokens.delete_token(client, args.prefix)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_edit(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    resource = args.resource

    def run() -> Result:
        if resource in {"member", "members"}:
            return admin.member_edit(client, _resolve_app(args, context))
        document = _document_argument(args)
        spec = _spec_argument(args)
        if resource == "device":
            return DeviceOperations(client, _resolve_app(args, context)).edit(args.id, document=document, spec=spec)
        return ApplicationOperations(client).edit(args.id, document=document, spec=spec)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_get(args, *, context: Context, client: DrogueClient, output: str | None, stdout, stderr) -> int:
    resource = args.resource
    json_output = output == "json"
    pretty: Callable[[Any, TextIO], None] | None = None

    if resource in {"app", "apps", "application", "applications"}:
        operations = ApplicationOperations(client)
        if args.id:
            run: Callable[[], Result] = lambda: operations.read(args.id)
        else:
            run = lambda: operations.list(_labels(args.labels))
            pretty = tables.apps_table
    elif resource in {"device", "devices"}:
        def run() -> Result:
            devices = DeviceOperations(client, _resolve_app(args, context))
            if args.id:
                return devices.read(args.id)
            return devices.list(_labels(args.labels))

        if not args.id:
            wide = output == "wide"
            pretty = lambda data, out: tables.devices_table(data, out, wide=wide)
    elif resource in {"member", "members"}:
        run = lambda: admin.member_list(client, _resolve_app(args, context))
        pretty = tables.members_table
    else:
        run = lambda: tokens.list_tokens(client)
        pretty = tables.tokens_table

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr, pretty=pretty)


def _run_set(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    def run() -> Result:
        devices = DeviceOperations(client, _resolve_app(args, context))
        if args.resource == "gateway":
            return devices.set_gateway(args.id, args.gateway)
        if args.resource == "password":
            return devices.set_password(args.id, args.password, args.username)
        return devices.add_alias(args.id, args.alias)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_label(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    def run() -> Result:
        if args.resource == "device":
            return DeviceOperations(client, _resolve_app(args, context)).add_labels(args.id, args.labels)
        return ApplicationOperations(client).add_labels(args.id, args.labels)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_transfer(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    if args.transfer_command == "init":
        return _render(
            lambda: admin.transfer_app(client, _resolve_app(args, context), args.user),
            json_output=json_output,
            stdout=stdout,
            stderr=stderr,
            pretty=tables.transfer_guide,
        )
    if args.transfer_command == "accept":
        run: Callable[[], Result] = lambda: admin.accept_transfer(client, args.id)
    else:
        run = lambda: admin.cancel_transfer(client, args.id)
    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_command(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    def run() -> Result:
        app = _resolve_app(args, context)
        if args.filename:
            body = parse_json_argument(_read_file_bytes(args.filename, "payload file").decode("utf-8"), "payload")
        else:
            body = parse_json_argument(args.payload, "data")
        return send_command(client, app, args.device, args.command_name, body)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_stream(args, *, context: Context, store: ContextStore, json_output: bool, stdout, stderr) -> int:
    try:
        stream_app(
            context,
            _resolve_app(args, context),
            device=args.device,
            count=args.count,
            insecure=args.insecure,
            stdout=stdout,
            on_refresh=store.mark_changed,
        )
    except DrogueError as exc:
        return display(exc, json_output=json_output, stdout=stdout, stderr=stderr)
    return EXIT_SUCCESS


def _run_whoami(args, *, context: Context, client: DrogueClient, json_output: bool, stdout, stderr) -> int:
    if args.token:
        return _render(
            lambda: SuccessWithMessage(context.token.display_token()),
            json_output=json_output,
            stdout=stdout,
            stderr=stderr,
        )
    if args.whoami_command in {"endpoints", "endpoint"}:
        service = args.service if args.service not in {None, "*"} else None
        if service:
            run: Callable[[], Result] = lambda: SuccessWithMessage(
                select_endpoint(get_authenticated_endpoints(client), service)
            )
            return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)
        return _render(
            lambda: SuccessWithJsonData(get_authenticated_endpoints(client)),
            json_output=json_output,
            stdout=stdout,
            stderr=stderr,
            pretty=tables.endpoints_table,
        )

    data = {"context": context.name, "api": context.drogue_cloud_url}
    if context.default_app:
        data["default_app"] = context.default_app

    def whoami_text(payload: dict, out: TextIO) -> None:
        print(f"Connected to drogue-cloud service at: {payload['api']}", file=out)
        print(f"Context: {payload['context']}", file=out)
        if payload.get("default_app"):
            print(f"Default application: {payload['default_app']}", file=out)

    return _render(
        lambda: SuccessWithJsonData(data),
        json_output=json_output,
        stdout=stdout,
        stderr=stderr,
        pretty=whoami_text,
    )


def _run_login(args, *, store: ContextStore, json_output: bool, stdout, stderr) -> int:
    def run() -> Result:
        url = normalize_url(args.url)
        name = _option(args, "context") or os.getenv(CONTEXT_ENV_VAR) or DEFAULT_CONTEXT_NAME
        if args.access_token:
            user, token = parse_access_token(args.access_token)
            context = context_from_access_token(name, url, user, token, client_factory=DrogueClient)
        elif args.token:
            context = refresh_token_login(name, url, args.token, client_factory=DrogueClient)
        else:
            context = browser_login(name, url, stdout=stdout, client_factory=DrogueClient)

        store.add_context(context)
        message = f"Successfully authenticated to drogue cloud : {url}\nSaved context: {context.name}"
        if not args.keep_current:
            store.set_active_context(context.name)
            message = f"{message}\nSwitched active context to: {context.name}"
        return SuccessWithMessage(message)

    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr)


def _run_config(args, *, store: ContextStore, json_output: bool, stdout, stderr) -> int:
    command = args.config_command
    context_name = _option(args, "context") or os.getenv(CONTEXT_ENV_VAR)
    pretty: Callable[[Any, TextIO], None] | None = None

    def run() -> Result:
        if command == "create":
            raise InvalidInputError("To create a new context use drg login")
        if command == "list":
            return SuccessWithJsonData(store.list_contexts())
        if command == "show":
            if args.active:
                return SuccessWithJsonData(store.get_context(context_name))
            return SuccessWithJsonData(store)
        if command == "default-context":
            store.set_active_context(args.name)
            return SuccessWithMessage(f"Switched active context to: {args.name}")
        if command in {"delete", "remove"}:
            store.delete_context(args.name)
            return SuccessWithMessage(f"Context {args.name} deleted")
        if command == "default-app":
            name = store.set_default_app(args.app_id, context_name)
            return SuccessWithMessage(f"Default app {args.app_id} set for context {name}")
        if command == "rename":
            store.rename_context(args.old, args.new)
            return SuccessWithMessage(f"Context {args.old} renamed to {args.new}")
        name = store.set_default_algo(SignAlgo(args.algo), context_name)
        return SuccessWithMessage(f"Default algorithm {args.algo} set for context {name}")

    if command == "list":
        pretty = lambda data, out: tables.contexts_table(data, store.active_context, out)
    elif command == "show":
        pretty = _yaml_printer
    return _render(run, json_output=json_output, stdout=stdout, stderr=stderr, pretty=pretty)


def _run_version(args, *, json_output: bool, stdout, stderr) -> int:
    payload: dict[str, str] = {"drg": _cli_version(), "compatible_cloud": COMPATIBLE_DROGUE_VERSION}
    try:
        store = load_config(_option(args, "config"))
        context = store.get_context(_option(args, "context") or os.getenv(CONTEXT_ENV_VAR))
        payload["connected_cloud"] = get_cloud_version(DrogueClient.from_context(context))
    except DrogueError as exc:
        logger.debug("Failed to detect server side version: %s", exc)

    def version_text(data: dict, out: TextIO) -> None:
        print(f"Drg Version: {data['drg']}", file=out)
        print(f"Compatible Server Version: {data['compatible_cloud']}", file=out)
        if "connected_cloud" in data:
            print(f"Connected Drogue Cloud Version: {data['connected_cloud']}", file=out)

    return _render(
        lambda: SuccessWithJsonData(payload),
        json_output=json_output,
        stdout=stdout,
        stderr=stderr,
        pretty=version_text,
    )


def _dispatch(args: argparse.Namespace, *, stdout: TextIO, stderr: TextIO, stdin: TextIO) -> int:
    output = _option(args, "output")
    json_output = output == "json"
    config_path = _option(args, "config")

    if args.command == "version":
        return _run_version(args, json_output=json_output, stdout=stdout, stderr=stderr)

    if args.command == "login":
        try:
            store = load_config(config_path)
        except ConfigIssueError as exc:
            logger.info("Starting from an empty configuration: %s", exc)
            store = ContextStore.empty()
        code = _run_login(args, store=store, json_output=json_output, stdout=stdout, stderr=stderr)
        return _save_if_changed(store, config_path, code, stderr)

    try:
        store = load_config(config_path)
    except ConfigIssueError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_CONFIG_ERROR)

    if args.command in {"config", "context"}:
        code = _run_config(args, store=store, json_output=json_output, stdout=stdout, stderr=stderr)
        return _save_if_changed(store, config_path, code, stderr)

    context_name = _option(args, "context") or os.getenv(CONTEXT_ENV_VAR)

    if args.command == "set" and args.resource == "default-app":
        code = _render(
            lambda: SuccessWithMessage(
                f"Default app {args.app_id} set for context {store.set_default_app(args.app_id, context_name)}"
            ),
            json_output=json_output,
            stdout=stdout,
            stderr=stderr,
        )
        return _save_if_changed(store, config_path, code, stderr)

    try:
        context = store.get_context(context_name)
        if verify_token_validity(context, client_factory=DrogueClient):
            store.mark_changed()
    except DrogueError as exc:
        code = display(exc, json_output=json_output, stdout=stdout, stderr=stderr)
        return _save_if_changed(store, config_path, code, stderr)

    client = DrogueClient.from_context(context)
    handlers = {"json_output": json_output, "stdout": stdout, "stderr": stderr}

    if args.command == "whoami":
        code = _run_whoami(args, context=context, client=client, **handlers)
        return _save_if_changed(store, config_path, code, stderr)

    logger.warning("Using context: %s", context.name)

    if args.command in {"create", "add"}:
        code = _run_create(args, context=context, client=client, **handlers)
    elif args.command in {"delete", "remove"}:
        code = _run_delete(args, context=context, client=client, **handlers)
    elif args.command == "edit":
        code = _run_edit(args, context=context, client=client, **handlers)
    elif args.command == "get":
        code = _run_get(args, context=context, client=client, output=output, stdout=stdout, stderr=stderr)
    elif args.command == "set":
        code = _run_set(args, context=context, client=client, **handlers)
    elif args.command == "label":
        code = _run_label(args, context=context, client=client, **handlers)
    elif args.command == "apply":
        paths = args.paths
        code = _render(lambda: apply(client, paths, stdin=stdin), **handlers)
    elif args.command == "transfer":
        code = _run_transfer(args, context=context, client=client, **handlers)
    elif args.command in {"command", "cmd"}:
        code = _run_command(args, context=context, client=client, **handlers)
    elif args.command == "stream":
        code = _run_stream(
            args, context=context, store=store, json_output=json_output, stdout=stdout, stderr=stderr
        )
    else:
        code = _print_error(stderr, "error", f"unknown command {args.command}", code=EXIT_FAILURE)

    return _save_if_changed(store, config_path, code, stderr)


def _interactive(
    parser: argparse.ArgumentParser,
    base_args: argparse.Namespace,
    *,
    stdout: TextIO,
    stderr: TextIO,
    stdin: TextIO,
) -> int:
    while True:
        print(PROMPT, end="", file=stdout, flush=True)
        line = stdin.readline()
        if not line:
            return EXIT_SUCCESS
        try:
            argv = shlex.split(line)
        except ValueError as exc:
            _print_error(stderr, "error", str(exc), code=EXIT_FAILURE)
            continue
        if not argv:
            continue
        try:
            args = parser.parse_args(argv)
        except SystemExit:
            continue
        if args.command == "exit":
            return EXIT_SUCCESS
        if args.command is None:
            continue
        for name in ("config", "context", "output"):
            if not hasattr(args, name) and hasattr(base_args, name):
                setattr(args, name, getattr(base_args, name))
        _dispatch(args, stdout=stdout, stderr=stderr, stdin=stdin)


def main(
    argv: Sequence[str] | None = None,
    *,
    stdout: TextIO = sys.stdout,
    stderr: TextIO = sys.stderr,
    stdin: TextIO = sys.stdin,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(_option(args, "verbose", 0) or 0, stderr)

    if args.interactive:
        return _interactive(parser, args, stdout=stdout, stderr=stderr, stdin=stdin)
    if args.command is None:
        parser.print_help(file=stdout)
        return EXIT_FAILURE
    if args.command == "exit":
        return EXIT_SUCCESS
    return _dispatch(args, stdout=stdout, stderr=stderr, stdin=stdin)


if __name__ == "__main__":
    raise SystemExit(main())
