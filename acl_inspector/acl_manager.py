#!/usr/bin/env python3
"""
OneDrive ACL Inspector - Inheritance analysis and ACL management via Microsoft Graph.

This script reports how OneDrive folders inherit their permissions and manages
explicit grants:
1. Load the stored token.json credential (refreshing it when expired), or fall
   back to the read-only token in rclone.conf
2. Classify every permission entry as owner, inherited, unique or link
3. Derive the folder status, optionally probing inheritance sources to spot
   phantom (deleted) ancestors
4. Invite, remove and strip explicit permissions (needs a full-permission token)

Usage:
    python -m acl_inspector.acl_manager [global options] <command> [options]

Commands:
    list <item_path>...             - Show tagged ACL entries and inheritance status
    scan [dirname]                  - Recursively report inheritance status of folders
    invite <email> <folder_path>... - Send an invitation (write access unless --read-only)
    remove <email> <item_path>...   - Remove the email's explicit permissions (--max-depth to recurse)
    strip <item_path>...            - Remove all explicit (unique and link) permissions
    token                           - Show credential state, capability and expiry

Examples:
    python -m acl_inspector.acl_manager list "Documents" "Photos" --phantom-check
    python -m acl_inspector.acl_manager scan "Work" --max-depth 2 --workers 8
    python -m acl_inspector.acl_manager scan --only-user someone@example.com
    python -m acl_inspector.acl_manager invite someone@example.com "Documents/Project"
    python -m acl_inspector.acl_manager remove someone@example.com "Documents/Project" --dry-run
    python -m acl_inspector.acl_manager remove someone@example.com "Work" --max-depth 3
    python -m acl_inspector.acl_manager strip "Documents/Temp" --phantom-check
"""

import argparse
import json
import logging
import sys
import time
from typing import Callable, Dict, List, Optional, Tuple

from .acl_scanner import FolderReport, ScanResult, scan_folders
from .config_utils import Settings, load_settings
from .coordinator import CapabilityGate, CredentialLifecycleCoordinator, OperationKind, build_coordinator
from .credentials import CredentialState, format_timestamp
from .errors import ACLInspectorError, CapabilityError, RefreshFailed, TransportError
from .graph_client import GraphClient
from .inheritance import FolderAnalysis, FolderInheritanceStatus, InheritanceAnalyzer, TaggedPermission
from .permissions import PermissionTag, classify, parse_permissions, permission_ids_for_user
from .phantom import PhantomDetector, ProbeResult

logger = logging.getLogger(__name__)

STATUS_SYMBOLS = {
    FolderInheritanceStatus.INHERITING: "🔗",
    FolderInheritanceStatus.BROKEN: "🔒",
    FolderInheritanceStatus.MIXED: "🔀",
    FolderInheritanceStatus.CORRUPTED: "👻",
    FolderInheritanceStatus.NO_PERMISSIONS: "⚪",
}


class Inspector:
    """Everything a command needs, wired from Settings."""

    def __init__(self, settings: Settings, coordinator: Optional[CredentialLifecycleCoordinator] = None,
                 client: Optional[GraphClient] = None):
        self.settings = settings
        self.coordinator = coordinator or build_coordinator(settings)
        self.gate = CapabilityGate(self.coordinator)
        self.client = client or GraphClient(self.gate, timeout=settings.timeout)
        self.analyzer = InheritanceAnalyzer(
            phantom_detector=PhantomDetector(settings.phantom_ttl),
            existence_check=self.client.item_exists,
        )


def _handle_api_error(error: ACLInspectorError, operation: str) -> None:
    """
    Print an inspector error with helpful user guidance.

    Args:
        error: The error raised while processing an item
        operation: Description of what operation failed (for user context)
    """
    if isinstance(error, CapabilityError):
        print(f"❌ Cannot {operation}: {error}")
        print(f"\n🔑 {error.hint}")
        return

    if isinstance(error, RefreshFailed):
        print(f"❌ Cannot {operation}: {error}")
        return

    if not isinstance(error, TransportError):
        print(f"❌ Failed to {operation}: {error}")
        return

    if error.status is None:
        print(f"❌ Network error while trying to {operation}: {error.message}")
        return

    print(f"❌ Failed to {operation}: {error.status}")
    if error.status == 401:
        print("\n🔑 Token expired or invalid")
        print("It will be refreshed on the next request; if this keeps happening, re-authenticate.")
    elif error.status == 403:
        print("❌ Access denied - you may not have permission for this operation")
        print("This could be due to:")
        print("  - Insufficient permissions on the item")
        print("  - Item is in a shared folder you don't own")
        print("  - Microsoft Graph API permissions not granted")
    elif error.status == 404:
        print("❌ Item not found - check that the path is correct")
    elif error.message:
        print(f"Response: {error.message}")


def process_multiple_items(item_paths: List[str], client: GraphClient,
                           processor_func: Callable[[str, str], bool], operation_name: str) -> Dict:
    """
    Generic function to process multiple OneDrive items with a given processor function.

    Args:
        item_paths: List of paths to process
        client: Graph client used to resolve each path
        processor_func: Function that processes a single item (item_id, item_path) -> bool
        operation_name: Name of the operation for logging (e.g., "ACL listing")

    Returns:
        Dict with success/failure counts and summary
    """
    successful_items = 0
    failed_items = 0

    for i, item_path in enumerate(item_paths, 1):
        print(f"\n{'='*80}")
        print(f"Processing item {i}/{len(item_paths)}: {item_path}")
        print(f"{'='*80}")

        try:
            item_id = client.get_item_id(item_path)
        except ACLInspectorError as e:
            _handle_api_error(e, f"resolve '{item_path}'")
            print(f"❌ Skipping item {item_path} - could not get item ID")
            failed_items += 1
            continue

        try:
            if processor_func(item_id, item_path):
                successful_items += 1
            else:
                failed_items += 1
        except ACLInspectorError as e:
            _handle_api_error(e, operation_name)
            failed_items += 1

    print(f"\n{'='*80}")
    print(f"=== {operation_name.title()} Summary ===")
    print(f"Total items processed: {len(item_paths)}")
    print(f"Successful: {successful_items}")
    print(f"Failed: {failed_items}")

    if successful_items > 0:
        print(f"✅ Successfully processed {successful_items} item(s)")
    if failed_items > 0:
        print(f"❌ Failed to process {failed_items} item(s)")

    return {
        'successful': successful_items,
        'failed': failed_items,
        'total': len(item_paths)
    }


def print_permission_details(tagged: TaggedPermission) -> None:
    """Print detailed information about a single classified permission."""
    entry = tagged.entry
    print(f"  ID: {entry.id}")
    print(f"  Tag: {tagged.tag.value}")
    print(f"  Roles: {', '.join(sorted(entry.roles))}")

    for display_name, email in entry.users():
        print(f"  User: {display_name or 'N/A'}")
        print(f"  Email: {email or 'N/A'}")

    if entry.link is not None:
        print(f"  Link Type: {entry.link.type or 'N/A'}")
        print(f"  Link Scope: {entry.link.scope or 'N/A'}")
        print(f"  Link URL: {entry.link.url or 'N/A'}")

    if entry.inherited_from is not None:
        source = entry.inherited_from
        print(f"  Inherited From: {source.source_path or 'N/A'} ({source.source_id or 'no id'})")
        if tagged.probe is ProbeResult.PHANTOM:
            print("  ⚠️  Source no longer exists (phantom inheritance)")
        elif tagged.probe is ProbeResult.UNKNOWN:
            print("  ⚠️  Source could not be verified")


def print_analysis_summary(analysis: FolderAnalysis) -> None:
    symbol = STATUS_SYMBOLS[analysis.status]
    print(f"\n{symbol} Inheritance status: {analysis.status.value.upper()}")
    print(f"   Inherited entries: {analysis.inherited_count}, unique entries: {analysis.unique_count}")
    if analysis.phantom_sources:
        print(f"   👻 Phantom inheritance sources: {', '.join(analysis.phantom_sources)}")
    if analysis.unknown_sources:
        print(f"   ⚠️  Unverified inheritance sources: {', '.join(analysis.unknown_sources)}")
    for warning in analysis.warnings:
        print(f"   ⚠️  {warning}")


def list_item_acl(inspector: Inspector, item_paths: List[str], phantom_check: bool = False) -> Dict:
    """
    Show the tagged ACL and inheritance status of one or more items.

    Args:
        inspector: Wired inspector
        item_paths: List of paths to folders or files in OneDrive
        phantom_check: Probe inheritance sources for phantom ancestors
    """
    print(f"=== OneDrive ACL Inspector - List ===")
    print(f"Items: {', '.join(item_paths)}")
    print(f"Phantom check: {'on' if phantom_check else 'off'}")

    def processor(item_id: str, item_path: str) -> bool:
        permissions = inspector.client.fetch_permissions(item_id)
        analysis = inspector.analyzer.analyze_folder(permissions, phantom_check_enabled=phantom_check)

        if analysis.tagged:
            print(f"\n✅ Found {len(analysis.tagged)} permission(s) in ACL:")
            print("=" * 60)
            for i, tagged in enumerate(analysis.tagged, 1):
                print(f"\nPermission {i}:")
                print_permission_details(tagged)
                print("-" * 40)
        else:
            print("ℹ️  No permissions found for this item (empty ACL)")

        print_analysis_summary(analysis)
        return True

    return process_multiple_items(item_paths, inspector.client, processor, "ACL listing")


def _report_to_dict(report: FolderReport) -> Dict:
    data = {
        "path": report.path,
        "id": report.item_id,
        "depth": report.depth,
        "status": report.status.value if report.status else None,
        "error": str(report.error) if report.error else None,
    }
    if report.analysis is not None:
        data.update({
            "inherited_count": report.analysis.inherited_count,
            "unique_count": report.analysis.unique_count,
            "shared_users": report.shared_users,
            "phantom_sources": report.analysis.phantom_sources,
            "unknown_sources": report.analysis.unknown_sources,
            "tags": [tag.value for tag in report.analysis.tags],
        })
    return data


def _print_scan_result(result: ScanResult, only_user: Optional[str], scan_time: float) -> None:
    print(f"\n📊 Folder count by level:")
    for level, count in sorted(result.folders_per_level.items()):
        print(f"   Level {level}: {count} folders")

    reports = result.matching() if only_user else result.reports
    if only_user:
        print(f"\n📁 Found {len(reports)} folder(s) with explicit access for {only_user} in {scan_time:.1f} seconds:")
    else:
        print(f"\n📁 Scanned {len(reports)} folder(s) in {scan_time:.1f} seconds:")
    print("=" * 80)

    for report in reports:
        if report.error is not None and report.analysis is None:
            print(f"❌ {report.path or '/'}")
            print(f"   └─ {report.error}")
            continue
        print(f"{STATUS_SYMBOLS[report.status]} {report.path or '/'}")
        print(f"   └─ {report.status.value} ({report.analysis.inherited_count} inherited, "
              f"{report.analysis.unique_count} unique)")
        users = report.shared_users
        if users:
            users_str = ", ".join(users[:3])
            if len(users) > 3:
                users_str += f" and {len(users) - 3} more"
            print(f"   └─ Shared with: {users_str}")
        if report.analysis.phantom_sources:
            print(f"   └─ Phantom sources: {', '.join(report.analysis.phantom_sources)}")

    counts = result.status_counts()
    if counts:
        print(f"\n📊 Status summary:")
        for status in FolderInheritanceStatus:
            if counts.get(status):
                print(f"   {STATUS_SYMBOLS[status]} {status.value}: {counts[status]}")
    if result.failed:
        print(f"\n❌ {len(result.failed)} folder(s) could not be fully analyzed")


def scan_acl_tree(inspector: Inspector, dirname: Optional[str] = None, max_depth: int = 3,
                  max_workers: Optional[int] = None, phantom_check: bool = False,
                  only_user: Optional[str] = None, json_output: bool = False) -> bool:
    """
    Recursively report the inheritance status of a folder tree.

    Returns:
        True when every folder was analyzed
    """
    workers = max_workers or inspector.settings.max_workers
    if not json_output:
        print(f"=== OneDrive ACL Inspector - Scan ===")
        print(f"Start: {dirname or '/'}")
        print(f"Max depth: {max_depth}, workers: {workers}")
        if only_user:
            print(f"🎯 Filtering for user: {only_user} (with pruning optimization)")
        print(f"🔍 Scanning...")

    try:
        root_id = inspector.client.get_item_id(dirname or "")
    except ACLInspectorError as e:
        _handle_api_error(e, f"resolve '{dirname or '/'}'")
        return False

    start_time = time.time()
    try:
        result = scan_folders(
            inspector.client, inspector.analyzer, root_id, (dirname or "").strip("/"),
            max_depth=max_depth, max_workers=workers,
            phantom_check=phantom_check, only_user=only_user,
        )
    except ACLInspectorError as e:
        # Per-folder transport errors are recorded in the result; this is a credential failure
        _handle_api_error(e, "complete the scan")
        return False
    scan_time = time.time() - start_time

    if json_output:
        reports = result.matching() if only_user else result.reports
        output_data = {
            "scan_info": {
                "scan_time_seconds": round(scan_time, 1),
                "total_folders_scanned": len(result.reports),
                "failed_folders": len(result.failed),
                "target_user": only_user,
                "target_directory": dirname,
            },
            "folders": [_report_to_dict(report) for report in reports],
        }
        print(json.dumps(output_data, indent=2))
    else:
        _print_scan_result(result, only_user, scan_time)

    return not result.failed


def _require_full_access(inspector: Inspector, operation: OperationKind, description: str) -> bool:
    """Fail fast, before touching any item, when no full-permission token is available."""
    try:
        credential = inspector.gate.require(operation)
    except CapabilityError as e:
        _handle_api_error(e, description)
        return False
    print(f"✅ Using {credential.capability.wire} credential from {credential.source}")
    return True


def invite_permission_to_folders(inspector: Inspector, email: str, folder_paths: List[str],
                                 read_only: bool = False) -> Dict:
    """
    Send an invitation to multiple folders.

    Args:
        inspector: Wired inspector
        email: Email address to send the invitation to
        folder_paths: List of folder paths in OneDrive
        read_only: Grant read instead of write access
    """
    role = "read" if read_only else "write"
    print(f"=== OneDrive ACL Inspector - Send Invitations ===")
    print(f"Email: {email}")
    print(f"Role: {role}")
    print(f"Folders: {', '.join(folder_paths)}")

    if not _require_full_access(inspector, OperationKind.INVITE, "send invitations"):
        return {'successful': 0, 'failed': len(folder_paths), 'total': len(folder_paths)}

    def processor(item_id: str, item_path: str) -> bool:
        created = inspector.client.invite(item_id, email, role=role)
        print(f"✅ Invitation sent to {email} for {item_path}")
        for perm in created:
            print(f"   Permission ID: {perm.get('id', 'N/A')}, Roles: {', '.join(perm.get('roles', []))}")
        return True

    return process_multiple_items(folder_paths, inspector.client, processor, "invitation")


def _collect_user_grants(inspector: Inspector, email: str, item_id: str, item_path: str,
                         max_depth: int) -> List[Tuple[str, str, List[str]]]:
    """
    Find the explicit permissions granted to email on an item or, with max_depth > 0, below it.

    Returns:
        List of (item_id, item_path, permission_ids)
    """
    if max_depth == 0:
        entries, _ = parse_permissions(inspector.client.fetch_permissions(item_id))
        permission_ids = permission_ids_for_user(entries, email)
        return [(item_id, item_path, permission_ids)] if permission_ids else []

    print(f"🔍 Scanning {item_path or '/'} for items with permissions for {email}...")
    result = scan_folders(
        inspector.client, inspector.analyzer, item_id, item_path.strip("/"),
        max_depth=max_depth, max_workers=inspector.settings.max_workers, only_user=email,
    )
    for report in result.failed:
        print(f"⚠️  Could not check {report.path or '/'}: {report.error}")

    grants = []
    for report in result.matching():
        entries = [tagged.entry for tagged in report.analysis.tagged]
        grants.append((report.item_id, report.path or "/", permission_ids_for_user(entries, email)))
    print(f"✅ Scan complete. Found {len(grants)} item(s).")
    return grants


def _confirm(prompt: str, confirm: Callable[[str], str]) -> bool:
    try:
        response = confirm(prompt)
    except EOFError:
        return False
    return response.strip() in ("y", "Y")


def remove_permission(inspector: Inspector, email: str, item_paths: List[str], dry_run: bool = False,
                      max_depth: int = 0, assume_yes: bool = False,
                      confirm: Callable[[str], str] = input) -> Dict:
    """
    Remove the explicit permissions granted to an email from one or more items.

    Inherited grants cannot be removed on a child item and are left alone.
    With max_depth > 0 each item's folder tree is scanned for explicit grants
    (a matching folder's subtree is not descended: it inherits the grant).
    Matches are listed and removal asks for confirmation unless assume_yes.

    Args:
        inspector: Wired inspector
        email: Email address whose access is removed
        item_paths: Paths of the items (or tree roots) in OneDrive
        dry_run: List what would be removed without changing anything
        max_depth: How deep below each item to look; 0 checks only the item
        assume_yes: Skip the confirmation prompt
        confirm: Prompt function returning the user's answer

    Returns:
        Dict with success/failure counts; 'total' counts permissions found
    """
    print(f"=== OneDrive ACL Inspector - Remove Permission ===")
    print(f"Email: {email}")
    print(f"Items: {', '.join(item_paths)}")
    if max_depth > 0:
        print(f"Max depth: {max_depth}")
    if dry_run:
        print("🔍 DRY RUN: no permissions will be removed")
    elif not _require_full_access(inspector, OperationKind.REMOVE_PERMISSION, "remove permissions"):
        return {'successful': 0, 'failed': len(item_paths), 'total': len(item_paths)}

    grants = []
    failed_items = 0
    for item_path in item_paths:
        try:
            item_id = inspector.client.get_item_id(item_path)
            grants.extend(_collect_user_grants(inspector, email, item_id, item_path, max_depth))
        except ACLInspectorError as e:
            _handle_api_error(e, f"check '{item_path}'")
            failed_items += 1

    if not grants:
        print(f"ℹ️  No items found with explicit permissions for {email}")
        return {'successful': 0, 'failed': failed_items, 'total': 0}

    permission_count = sum(len(permission_ids) for _, _, permission_ids in grants)
    print(f"\nFound {len(grants)} item(s) with permissions for {email}:")
    for _, item_path, permission_ids in grants:
        print(f"  - {item_path} ({', '.join(permission_ids)})")

    if dry_run:
        print(f"\n⚠️  DRY RUN: Would remove {permission_count} permission(s)")
        return {'successful': 0, 'failed': failed_items, 'total': permission_count}

    if not assume_yes:
        print(f"\n⚠️  This will remove {email}'s access from {len(grants)} item(s).")
        if not _confirm("Continue? [y/N]: ", confirm):
            print("❌ Cancelled by user")
            return {'successful': 0, 'failed': failed_items, 'total': permission_count}

    print("\n🗑️  Removing permissions...")
    removed = 0
    for item_id, item_path, permission_ids in grants:
        for permission_id in permission_ids:
            try:
                inspector.client.remove_permission(item_id, permission_id)
            except ACLInspectorError as e:
                _handle_api_error(e, f"remove permission ID {permission_id} from {item_path}")
                failed_items += 1
                continue
            print(f"✅ Removed permission ID {permission_id} from {item_path}")
            removed += 1

    print(f"\n=== Permission Removal Summary ===")
    print(f"Removed: {removed} of {permission_count}")
    return {'successful': removed, 'failed': failed_items, 'total': permission_count}


def strip_explicit_permissions(inspector: Inspector, item_paths: List[str], dry_run: bool = False,
                               phantom_check: bool = False) -> Dict:
    """
    Remove all explicit (unique and link) permissions from one or more items.
    Leaves only inherited permissions (or none if no inherited ACL).

    With phantom_check, inherited entries whose source no longer exists are
    listed too: they cannot be removed from here.
    """
    print(f"=== OneDrive ACL Inspector - Strip Explicit Permissions ===")
    print(f"Items: {', '.join(item_paths)}")
    if dry_run:
        print("🔍 DRY RUN: no permissions will be removed")
    elif not _require_full_access(inspector, OperationKind.REMOVE_PERMISSION, "strip permissions"):
        return {'successful': 0, 'failed': len(item_paths), 'total': len(item_paths)}

    def processor(item_id: str, item_path: str) -> bool:
        permissions = inspector.client.fetch_permissions(item_id)
        analysis = inspector.analyzer.analyze_folder(permissions, phantom_check_enabled=phantom_check)

        for entry in analysis.phantom_entries():
            print(f"⚠️  Permission {entry.id} is inherited from a deleted item and cannot be removed here")

        to_remove = [tagged.entry for tagged in analysis.tagged
                     if tagged.tag in (PermissionTag.UNIQUE, PermissionTag.LINK)]
        if not to_remove:
            print("ℹ️  No explicit permissions to remove (only inherited or owner permissions present)")
            return True

        print(f"Found {len(to_remove)} explicit permission(s) to remove.")
        removed = 0
        for entry in to_remove:
            if dry_run:
                print(f"Would remove permission ID: {entry.id} ({classify(entry).value})")
                continue
            try:
                inspector.client.remove_permission(item_id, entry.id)
            except TransportError as e:
                if e.is_not_found:
                    print(f"❌ Permission ID {entry.id} not found (may have already been removed)")
                else:
                    _handle_api_error(e, f"remove permission ID {entry.id}")
                continue
            print(f"✅ Removed permission ID: {entry.id}")
            removed += 1

        if dry_run:
            return True
        if removed == len(to_remove):
            print(f"\n✅ Successfully removed {removed} explicit permission(s) from this item")
        else:
            print(f"\n❌ Removed {removed} of {len(to_remove)} explicit permission(s) from this item")
        return removed == len(to_remove)

    return process_multiple_items(item_paths, inspector.client, processor, "permission stripping")


def show_token_status(inspector: Inspector) -> bool:
    """Print the stored credential's state and what read/full operations would use."""
    print(f"=== OneDrive ACL Inspector - Token Status ===")
    print(f"Token file: {inspector.settings.token_file}")

    credential = inspector.coordinator.store.get()
    if credential is None:
        print("ℹ️  No stored credential")
    else:
        state = inspector.coordinator.state
        print(f"Source: {credential.source}")
        print(f"State: {state.value if state else 'none'}")
        print(f"Capability: {credential.capability.wire}")
        print(f"Expires: {format_timestamp(credential.expires_at) if credential.expires_at else 'unknown'}")
        print(f"Refreshable: {'Yes' if credential.refresh_token else 'No'}")
        if state is CredentialState.EXPIRED:
            print("⚠️  Stored token has expired; it will be refreshed on first use")

    # Only read access is required for the command to succeed
    read_ok = True
    for operation, label in ((OperationKind.LIST_PERMISSIONS, "Read operations"),
                             (OperationKind.INVITE, "Write operations")):
        try:
            usable = inspector.gate.require(operation)
        except CapabilityError as e:
            print(f"❌ {label}: unavailable ({e.reason or e})")
            print(f"   🔑 {e.hint}")
            if operation is OperationKind.LIST_PERMISSIONS:
                read_ok = False
            continue
        print(f"✅ {label}: {usable.capability.wire} credential from {usable.source}")
    return read_ok


def _failed(summary) -> bool:
    if isinstance(summary, dict):
        return summary['failed'] > 0
    return not summary


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    parser = argparse.ArgumentParser(description="Inspect OneDrive ACL inheritance and manage explicit permissions")
    parser.add_argument("--remote", default=None, help="Name of the OneDrive remote in rclone.conf (default: auto-detect)")
    parser.add_argument("--token-file", default=None, help="Path to token.json (default: ./token.json)")
    parser.add_argument("--config", default=None, help="Path to the inspector config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # List command
    list_parser = subparsers.add_parser('list', help='Show tagged ACL entries and inheritance status')
    list_parser.add_argument("item_paths", nargs="+", help="One or more paths to folders or files in OneDrive")
    list_parser.add_argument("--phantom-check", action="store_true", help="Verify that inheritance sources still exist")

    # Scan command
    scan_parser = subparsers.add_parser('scan', help='Recursively report inheritance status of folders')
    scan_parser.add_argument("dirname", nargs="?", default=None, help="Directory to start from (default: root)")
    scan_parser.add_argument("--max-depth", type=int, default=3, help="Maximum depth to scan (default: 3)")
    scan_parser.add_argument("--workers", type=int, default=None, help="Concurrent folder fetches (default: from config)")
    scan_parser.add_argument("--phantom-check", action="store_true", help="Verify that inheritance sources still exist")
    scan_parser.add_argument("--only-user", help="Only report folders with explicit permissions for this email")
    scan_parser.add_argument("--json-output", action="store_true", help="Output detailed JSON")

    # Invite command
    invite_parser = subparsers.add_parser('invite', help='Send invitation to one or more folders')
    invite_parser.add_argument("email", help="Email address to send invitation to")
    invite_parser.add_argument("folder_paths", nargs="+", help="One or more folder paths in OneDrive to grant access to")
    invite_parser.add_argument("--read-only", action="store_true", help="Grant read access instead of write")

    # Remove command
    remove_parser = subparsers.add_parser('remove', help="Remove the email's explicit permissions from item(s)")
    remove_parser.add_argument("email", help="Email address to remove permissions for")
    remove_parser.add_argument("item_paths", nargs="+", help="One or more paths to folders or files in OneDrive")
    remove_parser.add_argument("--dry-run", action="store_true", help="Show what would be removed without making changes")
    remove_parser.add_argument("--max-depth", type=int, default=0,
                               help="Also remove grants on sub-folders down to this depth (default: 0, only the given items)")
    remove_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation before removing")

    # Strip command
    strip_parser = subparsers.add_parser('strip', help='Remove all explicit (unique and link) permissions from item(s)')
    strip_parser.add_argument("item_paths", nargs="+", help="One or more paths to folders or files in OneDrive")
    strip_parser.add_argument("--dry-run", action="store_true", help="Show what would be removed without making changes")
    strip_parser.add_argument("--phantom-check", action="store_true", help="Also report entries inherited from deleted items")

    # Token command
    subparsers.add_parser('token', help='Show credential state, capability and expiry')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return 2
    if args.remote:
        settings.remote = args.remote
    if args.token_file:
        settings.token_file = args.token_file
    logger.debug("Using remote=%s token_file=%s", settings.remote or "<auto>", settings.token_file)

    if not getattr(args, "json_output", False):
        print("OneDrive ACL Inspector")
        print("=" * 50)

    inspector = Inspector(settings)

    if args.command == 'list':
        summary = list_item_acl(inspector, args.item_paths, args.phantom_check)
    elif args.command == 'scan':
        summary = scan_acl_tree(inspector, args.dirname, args.max_depth, args.workers,
                                args.phantom_check, args.only_user, args.json_output)
    elif args.command == 'invite':
        summary = invite_permission_to_folders(inspector, args.email, args.folder_paths, args.read_only)
    elif args.command == 'remove':
        summary = remove_permission(inspector, args.email, args.item_paths, args.dry_run,
                                   args.max_depth, args.yes)
    elif args.command == 'strip':
        summary = strip_explicit_permissions(inspector, args.item_paths, args.dry_run, args.phantom_check)
    else:
        summary = show_token_status(inspector)

    return 1 if _failed(summary) else 0


if __name__ == "__main__":
    sys.exit(main())
