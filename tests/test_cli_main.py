from __future__ import annotations

import io
import json

import pytest
import yaml
from cryptography import x509

from drg.cli.main import main

from conftest import AUTH_URL, REGISTRY_URL, TOKEN_URL, context_entry


def _run(argv: list[str], *, stdin: str = "") -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    rc = main(argv, stdout=out, stderr=err, stdin=io.StringIO(stdin))
    return rc, out.getvalue(), err.getvalue()


@pytest.fixture
def clean_env(monkeypatch) -> None:
    for name in ("DRGCFG", "DRG_CONTEXT", "DRG_APP"):
        monkeypatch.delenv(name, raising=False)


def test_login_with_access_token_saves_discovered_urls(tmp_path, cloud, clean_env) -> None:
    config = tmp_path / "drg_config.yaml"
    cloud.accepted_authorization = "Basic YWxpY2U6c2VjcmV0"

    rc, out, err = _run(
        ["-C", str(config), "login", "https://api.example.com", "--access-token", "alice:secret"]
    )

    assert rc == 0, err
    assert out == (
        "Successfully authenticated to drogue cloud : https://api.example.com\n"
        "Saved context: default\n"
        "Switched active context to: default\n"
    )
    stored = yaml.safe_load(config.read_text(encoding="utf-8"))
    assert stored["active_context"] == "default"
    (context,) = stored["contexts"]
    assert context["registry_url"] == REGISTRY_URL
    assert context["token_url"] == TOKEN_URL
    assert context["auth_url"] == AUTH_URL
    assert context["token"] == {"type": "access_token", "id": "alice", "token": "secret"}

    rc, out, _ = _run(["-C", str(config), "whoami", "--token"])
    assert rc == 0
    assert out == "secret\n"


def test_login_prepends_https_and_keeps_current_context(tmp_path, cloud, clean_env) -> None:
    config = tmp_path / "drg_config.yaml"
    _run(["-C", str(config), "login", "api.example.com", "--access-token", "alice:one"])

    rc, out, _ = _run(
        ["-C", str(config), "-c", "second", "login", "api.example.com", "--access-token", "bob:two", "-k"]
    )

    assert rc == 0
    assert out == "Successfully authenticated to drogue cloud : https://api.example.com\nSaved context: second\n"
    stored = yaml.safe_load(config.read_text(encoding="utf-8"))
    assert stored["active_context"] == "default"
    assert [ctx["name"] for ctx in stored["contexts"]] == ["default", "second"]


def test_login_with_rejected_token_does_not_write_config(tmp_path, cloud, clean_env) -> None:
    config = tmp_path / "drg_config.yaml"
    cloud.accepted_authorization = "Basic something-else"

    rc, _, err = _run(["-C", str(config), "login", "https://api.example.com", "--access-token", "alice:bad"])

    assert rc == 1
    assert "Unauthorized" in err
    assert not config.exists()


def test_login_rejects_malformed_access_token(tmp_path, cloud, clean_env) -> None:
    rc, _, err = _run(["-C", str(tmp_path / "c.yaml"), "login", "https://api.example.com", "--access-token", "nocolon"])
    assert rc == 1
    assert "username:token" in err


def test_missing_config_is_a_config_error(tmp_path, cloud, clean_env) -> None:
    rc, out, err = _run(["-C", str(tmp_path / "missing.yaml"), "get", "app"])
    assert rc == 2
    assert out == ""
    assert err.startswith("config error:")


def test_version_works_without_config(tmp_path, cloud, clean_env) -> None:
    rc, out, _ = _run(["-C", str(tmp_path / "missing.yaml"), "version"])
    assert rc == 0
    assert "Compatible Server Version: 0.10.0" in out


def test_version_json_reports_connected_cloud(config_path, cloud) -> None:
    cloud.version = "0.11.2"
    rc, out, _ = _run(["-C", str(config_path), "-o", "json", "version"])
    payload = json.loads(out)
    assert rc == 0
    assert payload["compatible_cloud"] == "0.10.0"
    assert payload["connected_cloud"] == "0.11.2"


def test_default_app_then_show_active(config_path, cloud) -> None:
    rc, out, _ = _run(["-C", str(config_path), "config", "default-app", "myapp"])
    assert rc == 0
    assert out == "Default app myapp set for context default\n"

    rc, out, _ = _run(["-C", str(config_path), "-o", "json", "config", "show", "--active"])
    assert rc == 0
    assert json.loads(out)["default_app"] == "myapp"


def test_set_default_app_is_persisted(config_path, cloud) -> None:
    rc, _, _ = _run(["-C", str(config_path), "set", "default-app", "myapp"])
    assert rc == 0
    stored = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert stored["contexts"][0]["default_app"] == "myapp"


def test_config_create_points_to_login(config_path, cloud) -> None:
    rc, _, err = _run(["-C", str(config_path), "config", "create"])
    assert rc == 1
    assert "To create a new context use drg login" in err


def test_config_rename_conflict_leaves_file_untouched(config_path, cloud) -> None:
    store = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    store["contexts"].append(context_entry("other"))
    config_path.write_text(yaml.safe_dump(store), encoding="utf-8")
    before = config_path.read_text(encoding="utf-8")

    rc, _, err = _run(["-C", str(config_path), "config", "rename", "default", "other"])

    assert rc == 1
    assert "already exists" in err
    assert config_path.read_text(encoding="utf-8") == before


def test_config_rename_to_empty_name_keeps_config_loadable(config_path, cloud) -> None:
    before = config_path.read_text(encoding="utf-8")

    rc, _, err = _run(["-C", str(config_path), "config", "rename", "default", ""])

    assert rc == 1
    assert "cannot be empty" in err
    assert config_path.read_text(encoding="utf-8") == before
    rc, out, _ = _run(["-C", str(config_path), "config", "list"])
    assert rc == 0
    assert "default" in out


def test_config_list_marks_active_context(config_path, cloud) -> None:
    rc, out, _ = _run(["-C", str(config_path), "context", "list"])
    assert rc == 0
    assert out.splitlines()[1].split() == ["*", "default"]


def test_unknown_context_flag_fails(config_path, cloud) -> None:
    rc, _, err = _run(["-C", str(config_path), "-c", "nope", "get", "app"])
    assert rc == 1
    assert "Context not found: nope" in err


def test_expired_oauth_token_is_refreshed_and_saved(tmp_path, cloud, clean_env) -> None:
    config = tmp_path / "drg_config.yaml"
    entry = context_entry(
        token={"type": "oauth", "access_token": "stale", "refresh_token": "r1", "expires_in": 60},
        token_exp_date="2020-01-01T00:00:00Z",
    )
    config.write_text(yaml.safe_dump({"active_context": "default", "contexts": [entry]}), encoding="utf-8")

    rc, out, _ = _run(["-C", str(config), "whoami", "--token"])

    assert rc == 0
    assert out == "fresh-access\n"
    assert "exchange_token refresh_token" in cloud.calls
    stored = yaml.safe_load(config.read_text(encoding="utf-8"))
    assert stored["contexts"][0]["token"]["access_token"] == "fresh-access"


def test_create_get_and_delete_app(config_path, cloud) -> None:
    rc, out, _ = _run(["-C", str(config_path), "create", "app", "app1"])
    assert (rc, out) == (0, "Application created\n")

    rc, out, _ = _run(["-C", str(config_path), "get", "apps"])
    assert rc == 0
    assert out.splitlines()[0].split() == ["NAME", "AGE"]
    assert out.splitlines()[1].split()[0] == "app1"

    rc, out, _ = _run(["-C", str(config_path), "delete", "app", "app1"])
    assert (rc, out) == (0, "Application deleted\n")

    rc, out, _ = _run(["-C", str(config_path), "delete", "app", "app1", "--ignore-missing"])
    assert (rc, out) == (0, "No application to delete, ignoring.\n")

    rc, _, err = _run(["-C", str(config_path), "delete", "app", "app1"])
    assert rc == 1
    assert err.startswith("error:")


def test_create_app_from_file(config_path, cloud, tmp_path) -> None:
    document = tmp_path / "app.yaml"
    document.write_text("metadata:\n  name: from-file\nspec:\n  a: 1\n", encoding="utf-8")

    rc, _, _ = _run(["-C", str(config_path), "add", "app", "-f", str(document)])

    assert rc == 0
    assert cloud.apps["from-file"]["spec"] == {"a": 1}


@pytest.mark.parametrize("resource_id", [[], ["from-file"]])
def test_create_app_from_file_with_non_object_metadata(config_path, cloud, tmp_path, resource_id) -> None:
    document = tmp_path / "app.json"
    document.write_text(json.dumps({"metadata": ["from-file"]}), encoding="utf-8")

    rc, out, err = _run(["-C", str(config_path), "create", "app", *resource_id, "-f", str(document)])

    assert rc == 1
    assert out == ""
    assert "metadata must be an object" in err
    assert cloud.apps == {}


def test_json_output_for_missing_resource(config_path, cloud) -> None:
    rc, out, err = _run(["-C", str(config_path), "-o", "json", "get", "app", "ghost"])
    assert rc == 1
    assert err == ""
    assert json.loads(out) == {"status": "failure", "message": "Application ghost not found"}


def test_device_commands_need_an_application(config_path, cloud) -> None:
    rc, _, err = _run(["-C", str(config_path), "get", "device"])
    assert rc == 1
    assert "Missing app argument" in err


def test_stream_failure_uses_json_envelope(config_path, cloud) -> None:
    rc, out, err = _run(["-C", str(config_path), "-o", "json", "stream"])
    assert rc == 1
    assert err == ""
    assert json.loads(out) == {
        "status": "failure",
        "message": "Missing app argument and no default app specified in config file.",
    }


def test_application_from_environment(config_path, cloud, monkeypatch) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}
    monkeypatch.setenv("DRG_APP", "app1")

    rc, out, _ = _run(["-C", str(config_path), "create", "device", "dev1", "--spec", '{"alias": ["a1"]}'])

    assert (rc, out) == (0, "Device created\n")
    assert cloud.devices[("app1", "dev1")]["spec"] == {"alias": ["a1"]}


def test_invalid_spec_argument(config_path, cloud) -> None:
    rc, _, err = _run(["-C", str(config_path), "create", "app", "app1", "--spec", "{not json"])
    assert rc == 1
    assert "Can't parse spec args" in err
    assert cloud.apps == {}


def test_set_and_label_device(config_path, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}
    cloud.devices[("app1", "dev1")] = {"metadata": {"name": "dev1", "application": "app1"}, "spec": {}}

    assert _run(["-C", str(config_path), "set", "gateway", "dev1", "gw", "-a", "app1"])[1] == "Device updated\n"
    assert _run(["-C", str(config_path), "set", "alias", "dev1", "alias1", "--app", "app1"])[0] == 0
    assert _run(["-C", str(config_path), "label", "device", "dev1", "zone=eu", "--application", "app1"])[0] == 0

    stored = cloud.devices[("app1", "dev1")]
    assert stored["spec"]["gatewaySelector"]["matchNames"] == ["gw"]
    assert stored["spec"]["alias"] == ["alias1"]
    assert stored["metadata"]["labels"] == {"zone": "eu"}


def test_members(config_path, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}

    rc, out, _ = _run(["-C", str(config_path), "create", "member", "bob", "--role", "reader", "-a", "app1"])
    assert (rc, out) == (0, "Application members updated\n")

    rc, out, _ = _run(["-C", str(config_path), "get", "members", "-a", "app1"])
    assert rc == 0
    assert out.splitlines()[1].split() == ["bob", "reader"]


def test_tokens(config_path, cloud) -> None:
    rc, out, _ = _run(["-C", str(config_path), "create", "token", "--description", "ci"])
    assert rc == 0
    assert "A new API Token was created:" in out
    assert "drg_secret_value" in out

    rc, out, _ = _run(["-C", str(config_path), "get", "tokens"])
    assert rc == 0
    assert out.splitlines()[0].startswith("TOKEN PREFIX | AGE")
    assert "ci" in out.splitlines()[1]

    rc, out, _ = _run(["-C", str(config_path), "delete", "token", "drg_0"])
    assert (rc, out) == (0, "Access token with prefix drg_0 deleted\n")


def test_send_command(config_path, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}
    cloud.devices[("app1", "dev1")] = {"metadata": {"name": "dev1", "application": "app1"}}

    rc, out, _ = _run(["-C", str(config_path), "cmd", "dev1", "reboot", "-a", "app1", "-p", '{"delay": 1}'])

    assert (rc, out) == (0, "Command accepted\n")
    assert cloud.commands == [("app1", "dev1", "reboot", {"delay": 1})]


def test_transfer_init_prints_guide(config_path, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}
    rc, out, _ = _run(["-C", str(config_path), "transfer", "init", "bob", "-a", "app1"])
    assert rc == 0
    assert "drg transfer accept app1" in out


def test_apply_reports_partial_failure(config_path, cloud, tmp_path) -> None:
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"metadata": {"name": "app1"}}), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")

    rc, out, err = _run(["-C", str(config_path), "apply", "-f", str(good), "-f", str(bad)])

    assert rc == 1
    assert f"{good}: Success creating app app1" in out
    assert "error: 1 of 2 failed" in err
    assert "app1" in cloud.apps


def test_whoami_endpoints(config_path, cloud) -> None:
    rc, out, _ = _run(["-C", str(config_path), "whoami", "endpoints", "mqtt"])
    assert (rc, out) == (0, "mqtt.example.com:443\n")

    rc, out, _ = _run(["-C", str(config_path), "whoami", "endpoints", "*"])
    assert rc == 0
    assert "websocket_integration" in out

    rc, _, err = _run(["-C", str(config_path), "whoami", "endpoints", "nothing"])
    assert rc == 1
    assert "Service not found in endpoints list." in err


def test_app_and_device_certificates(config_path, cloud, tmp_path) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}
    cloud.devices[("app1", "dev1")] = {"metadata": {"name": "dev1", "application": "app1"}}
    ca_key = tmp_path / "ca.key"
    device_cert = tmp_path / "dev1.crt"
    device_key = tmp_path / "dev1.key"

    rc, out, err = _run(
        ["-C", str(config_path), "create", "app-cert", "-a", "app1", "--algo", "EdDSA", "--key-output", str(ca_key)]
    )
    assert rc == 0, err
    assert f"Private key written to {ca_key}" in out

    rc, out, err = _run(
        [
            "-C",
            str(config_path),
            "create",
            "device-cert",
            "dev1",
            "-a",
            "app1",
            "--ca-key",
            str(ca_key),
            "--cert-output",
            str(device_cert),
            "--key-output",
            str(device_key),
        ]
    )
    assert rc == 0, err
    assert out.splitlines()[-1] == "Device updated"
    assert cloud.devices[("app1", "dev1")]["spec"]["alias"] == ["CN=dev1, O=Drogue IoT, OU=app1"]

    cert = x509.load_pem_x509_certificate(device_cert.read_bytes())
    assert cert.issuer.rfc4514_string() == "CN=app1,OU=Cloud,O=Drogue IoT"
    assert device_key.exists()


def test_device_certificate_needs_a_trust_anchor(config_path, cloud, tmp_path) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}, "spec": {}}
    ca_key = tmp_path / "ca.key"
    ca_key.write_bytes(b"unused")

    rc, _, err = _run(
        ["-C", str(config_path), "create", "device-cert", "dev1", "-a", "app1", "--ca-key", str(ca_key)]
    )

    assert rc == 1
    assert "No trust anchors for this app" in err


def test_interactive_session(config_path, cloud) -> None:
    cloud.apps["app1"] = {"metadata": {"name": "app1"}}

    rc, out, _ = _run(["-C", str(config_path), "--interactive"], stdin="get app app1\nexit\nget app\n")

    assert rc == 0
    assert out.count("drg 🚀 ") == 2
    assert '"name": "app1"' in out


def test_verbose_flag_enables_context_warning(config_path, cloud) -> None:
    rc, _, err = _run(["-C", str(config_path), "-v", "get", "apps"])
    assert rc == 0
    assert "Using context: default" in err
