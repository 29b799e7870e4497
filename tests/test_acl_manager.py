"""Tests for the command line interface."""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from acl_inspector import acl_manager
from acl_inspector.acl_manager import (
    Inspector,
    invite_permission_to_folders,
    list_item_acl,
    main,
    remove_permission,
    scan_acl_tree,
    strip_explicit_permissions,
)
from acl_inspector.config_utils import Settings
from acl_inspector.credentials import Capability, Credential, utcnow
from acl_inspector.errors import CapabilityError, TransportError
from acl_inspector.phantom import ExistenceResult

from .graph_records import inherited_record, link_record, owner_record, unique_record


@pytest.fixture
def client():
    client = MagicMock()
    client.get_item_id.side_effect = lambda path: f"id:{path}"
    client.item_exists.return_value = ExistenceResult.FOUND
    return client


@pytest.fixture
def inspector(client):
    coordinator = MagicMock()
    coordinator.acquire.return_value = Credential("a", capability=Capability.FULL, source="token.json")
    return Inspector(Settings(), coordinator=coordinator, client=client)


class TestList:
    """list command tests."""

    def test_prints_tags_and_status(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [owner_record(), inherited_record("i1"), link_record("l1")]
        summary = list_item_acl(inspector, ["Documents"])
        out = capsys.readouterr().out
        assert summary == {"successful": 1, "failed": 0, "total": 1}
        assert "Tag: inherited" in out
        assert "Tag: link" in out
        assert "Inheritance status: INHERITING" in out

    def test_phantom_source_reported(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [inherited_record("i1", source_id="gone")]
        client.item_exists.return_value = ExistenceResult.NOT_FOUND
        list_item_acl(inspector, ["Documents"], phantom_check=True)
        out = capsys.readouterr().out
        assert "CORRUPTED" in out
        assert "phantom inheritance" in out

    def test_failed_item_counted(self, inspector, client, capsys):
        client.fetch_permissions.side_effect = [TransportError(403, "accessDenied"), [unique_record("u1")]]
        summary = list_item_acl(inspector, ["Locked", "Open"])
        assert summary == {"successful": 1, "failed": 1, "total": 2}
        assert "Access denied" in capsys.readouterr().out

    def test_unresolvable_path(self, inspector, client):
        client.get_item_id.side_effect = TransportError(404, "itemNotFound")
        assert list_item_acl(inspector, ["Missing"])["failed"] == 1


class TestScan:
    """scan command tests."""

    def test_json_output(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [owner_record(), unique_record("u1", email="friend@example.com")]
        client.list_children.return_value = []
        assert scan_acl_tree(inspector, "Work", max_depth=1, json_output=True)
        data = json.loads(capsys.readouterr().out)
        assert data["scan_info"]["total_folders_scanned"] == 1
        assert data["folders"][0]["status"] == "broken"
        assert data["folders"][0]["shared_users"] == ["friend@example.com"]


class TestMutatingCommands:
    """invite, remove and strip tests."""

    def test_invite_needs_full_capability(self, inspector, client, capsys):
        inspector.coordinator.acquire.side_effect = CapabilityError(
            Capability.FULL, Capability.READ_ONLY, "only a read-only token is available")
        summary = invite_permission_to_folders(inspector, "friend@example.com", ["A", "B"])
        assert summary["failed"] == 2
        client.invite.assert_not_called()
        assert "interactive sign-in" in capsys.readouterr().out

    def test_invite_read_only_role(self, inspector, client):
        client.invite.return_value = [{"id": "new", "roles": ["read"]}]
        invite_permission_to_folders(inspector, "friend@example.com", ["A"], read_only=True)
        client.invite.assert_called_once_with("id:A", "friend@example.com", role="read")

    def test_remove_only_explicit_grants(self, inspector, client):
        client.fetch_permissions.return_value = [
            inherited_record("i1", email="friend@example.com"),
            unique_record("u1", email="friend@example.com"),
            unique_record("u2", email="other@example.com"),
        ]
        summary = remove_permission(inspector, "Friend@Example.com", ["A"], confirm=lambda prompt: "y")
        client.remove_permission.assert_called_once_with("id:A", "u1")
        assert summary["failed"] == 0

    def test_remove_dry_run(self, inspector, client):
        client.fetch_permissions.return_value = [unique_record("u1", email="friend@example.com")]
        remove_permission(inspector, "friend@example.com", ["A"], dry_run=True)
        client.remove_permission.assert_not_called()

    def test_remove_asks_before_deleting(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [unique_record("u1", email="friend@example.com")]
        prompts = []

        def decline(prompt):
            prompts.append(prompt)
            return "n"

        summary = remove_permission(inspector, "friend@example.com", ["A"], confirm=decline)

        assert prompts == ["Continue? [y/N]: "]
        client.remove_permission.assert_not_called()
        assert summary["successful"] == 0
        assert "Cancelled by user" in capsys.readouterr().out

    def test_remove_closed_stdin_cancels(self, inspector, client):
        client.fetch_permissions.return_value = [unique_record("u1", email="friend@example.com")]

        def closed(prompt):
            raise EOFError

        remove_permission(inspector, "friend@example.com", ["A"], confirm=closed)
        client.remove_permission.assert_not_called()

    def test_remove_assume_yes_skips_prompt(self, inspector, client):
        client.fetch_permissions.return_value = [unique_record("u1", email="friend@example.com")]
        confirm = MagicMock()
        remove_permission(inspector, "friend@example.com", ["A"], assume_yes=True, confirm=confirm)
        confirm.assert_not_called()
        client.remove_permission.assert_called_once_with("id:A", "u1")

    def test_remove_recursive_collects_matching_folders(self, inspector, client, capsys):
        children = {
            "id:Work": [{"id": "sub1", "name": "Sub1", "folder": {}}, {"id": "sub2", "name": "Sub2", "folder": {}}],
            "sub1": [{"id": "pruned", "name": "Pruned", "folder": {}}],
            "sub2": [{"id": "deep", "name": "Deep", "folder": {}}],
        }
        permissions = {
            "id:Work": [owner_record()],
            "sub1": [owner_record(), unique_record("u1", email="friend@example.com")],
            "sub2": [owner_record(), inherited_record("i2", email="friend@example.com")],
            "pruned": [owner_record(), unique_record("u-pruned", email="friend@example.com")],
            "deep": [owner_record(), unique_record("u-deep", email="friend@example.com"), unique_record("u-other")],
        }
        client.list_children.side_effect = lambda item_id: children.get(item_id, [])
        client.fetch_permissions.side_effect = lambda item_id: permissions[item_id]

        summary = remove_permission(inspector, "friend@example.com", ["Work"], max_depth=3,
                                    confirm=lambda prompt: "y")

        removed = [call.args for call in client.remove_permission.call_args_list]
        assert removed == [("sub1", "u1"), ("deep", "u-deep")]
        assert summary == {"successful": 2, "failed": 0, "total": 2}
        out = capsys.readouterr().out
        assert "Work/Sub1" in out
        assert "Work/Sub2/Deep" in out

    def test_remove_recursive_dry_run_lists_only(self, inspector, client, capsys):
        client.list_children.return_value = []
        client.fetch_permissions.return_value = [unique_record("u1", email="friend@example.com")]
        confirm = MagicMock()

        remove_permission(inspector, "friend@example.com", ["Work"], dry_run=True, max_depth=2, confirm=confirm)

        client.remove_permission.assert_not_called()
        confirm.assert_not_called()
        assert "Would remove 1 permission(s)" in capsys.readouterr().out

    def test_remove_nothing_found(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [unique_record("u1", email="other@example.com")]
        summary = remove_permission(inspector, "friend@example.com", ["A"], confirm=MagicMock())
        assert summary["failed"] == 0
        assert "No items found" in capsys.readouterr().out

    def test_strip_removes_unique_and_link(self, inspector, client):
        client.fetch_permissions.return_value = [
            owner_record(), inherited_record("i1"), unique_record("u1"), link_record("l1"),
        ]
        summary = strip_explicit_permissions(inspector, ["A"])
        removed = [call.args[1] for call in client.remove_permission.call_args_list]
        assert removed == ["u1", "l1"]
        assert summary["successful"] == 1

    def test_strip_reports_phantom_entries(self, inspector, client, capsys):
        client.fetch_permissions.return_value = [inherited_record("i1", source_id="gone")]
        client.item_exists.return_value = ExistenceResult.NOT_FOUND
        strip_explicit_permissions(inspector, ["A"], phantom_check=True)
        assert "i1 is inherited from a deleted item" in capsys.readouterr().out
        client.remove_permission.assert_not_called()

    def test_strip_partial_failure(self, inspector, client):
        client.fetch_permissions.return_value = [unique_record("u1"), unique_record("u2")]
        client.remove_permission.side_effect = [None, TransportError(403, "accessDenied")]
        summary = strip_explicit_permissions(inspector, ["A"])
        assert summary["failed"] == 1


class TestMain:
    """Entry point tests."""

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_bad_config(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.ini"), "token"]) == 2

    def test_remove_options_reach_command(self, monkeypatch):
        calls = []
        monkeypatch.setattr(acl_manager, "load_settings", lambda path: Settings())
        monkeypatch.setattr(acl_manager, "Inspector", lambda settings: "inspector")
        monkeypatch.setattr(acl_manager, "remove_permission",
                            lambda *args: calls.append(args) or {"successful": 1, "failed": 0, "total": 1})

        assert main(["remove", "friend@example.com", "Work", "--max-depth", "2", "--yes"]) == 0
        assert calls == [("inspector", "friend@example.com", ["Work"], False, 2, True)]

    def test_token_status(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setattr(acl_manager, "load_settings", lambda path: Settings(
            token_file=str(tmp_path / "token.json")))
        (tmp_path / "token.json").write_text(json.dumps({
            "accessToken": "a",
            "refreshToken": "r",
            "expiresAt": (utcnow() + timedelta(hours=1)).isoformat(),
            "capability": "full",
        }))
        assert main(["token"]) == 0
        out = capsys.readouterr().out
        assert "State: valid" in out
        assert "Capability: full" in out
        assert "Write operations: full credential from token.json" in out
