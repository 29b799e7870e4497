#!/usr/bin/env python3
"""
OneDrive ACL Scanner - Analyze inheritance status across a folder tree.

The tree is walked level by level. Within a level, folders are fetched
concurrently, with at most max_workers requests in flight to stay within
Graph rate limits. Each folder gets a FolderReport holding either its
FolderAnalysis or the TransportError that prevented it; one failing folder
never aborts the scan.

With only_user set, the scan reports folders that grant that user explicit
access and prunes their subtrees (descendants inherit the grant).
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import TransportError
from .graph_client import GraphClient
from .inheritance import FolderAnalysis, FolderInheritanceStatus, InheritanceAnalyzer
from .permissions import has_explicit_user_permission, shared_users

logger = logging.getLogger(__name__)


@dataclass
class FolderReport:
    item_id: str
    path: str
    depth: int
    parent_id: Optional[str] = None
    analysis: Optional[FolderAnalysis] = None
    error: Optional[TransportError] = None
    user_match: bool = False
    child_count: int = 0

    @property
    def status(self) -> Optional[FolderInheritanceStatus]:
        return self.analysis.status if self.analysis else None

    @property
    def shared_users(self) -> List[str]:
        if self.analysis is None:
            return []
        return shared_users(tagged.entry for tagged in self.analysis.tagged)


@dataclass
class ScanResult:
    reports: List[FolderReport] = field(default_factory=list)
    folders_per_level: Dict[int, int] = field(default_factory=dict)

    @property
    def failed(self) -> List[FolderReport]:
        return [report for report in self.reports if report.error is not None]

    def status_counts(self) -> Counter:
        return Counter(report.status for report in self.reports if report.status is not None)

    def matching(self) -> List[FolderReport]:
        return [report for report in self.reports if report.user_match]


def _visit_folder(client: GraphClient, analyzer: InheritanceAnalyzer, item_id: str, path: str,
                  depth: int, parent_id: Optional[str], descend: bool, phantom_check: bool,
                  only_user: Optional[str]) -> Tuple[FolderReport, List[Tuple[str, str]]]:
    """Fetch and analyze one folder; return its report and the child folders to visit."""
    report = FolderReport(item_id=item_id, path=path, depth=depth, parent_id=parent_id)

    try:
        permissions = client.fetch_permissions(item_id)
        report.analysis = analyzer.analyze_folder(permissions, phantom_check_enabled=phantom_check)
    except TransportError as e:
        logger.warning("Could not analyze %s: %s", path or item_id, e)
        report.error = e

    if only_user and report.analysis is not None:
        entries = [tagged.entry for tagged in report.analysis.tagged]
        report.user_match = has_explicit_user_permission(entries, only_user)
        if report.user_match:
            # Descendants inherit this grant
            return report, []

    if not descend:
        return report, []

    try:
        children = client.list_children(item_id)
    except TransportError as e:
        logger.warning("Could not list children of %s: %s", path or item_id, e)
        if report.error is None:
            report.error = e
        return report, []

    sub_folders = []
    for child in children:
        if "folder" in child and child.get("id"):
            child_name = child.get("name", "Unknown")
            child_path = f"{path}/{child_name}" if path else child_name
            sub_folders.append((child["id"], child_path))
    report.child_count = len(sub_folders)
    return report, sub_folders


def scan_folders(client: GraphClient, analyzer: InheritanceAnalyzer, root_id: str, root_path: str = "",
                 max_depth: int = 3, max_workers: int = 4, phantom_check: bool = False,
                 only_user: Optional[str] = None) -> ScanResult:
    """
    Recursively analyze a folder and its sub-folders.

    Args:
        client: Graph client used for permission and children fetches
        analyzer: Inheritance analyzer (its phantom cache is shared by all folders)
        root_id: Item ID of the starting folder
        root_path: Display path of the starting folder
        max_depth: Deepest level to analyze; 0 analyzes only the root
        max_workers: Maximum concurrent folder fetches
        phantom_check: Probe inheritance sources of fully inheriting folders
        only_user: Optional email; enables match reporting and pruning

    Returns:
        ScanResult with reports ordered by depth, then path
    """
    result = ScanResult()
    checked = set()
    level: List[Tuple[str, str, Optional[str]]] = [(root_id, root_path, None)]
    depth = 0

    executor = ThreadPoolExecutor(max_workers=max(1, max_workers))
    try:
        while level and depth <= max_depth:
            futures = []
            for item_id, path, parent_id in level:
                if item_id in checked:
                    continue
                checked.add(item_id)
                futures.append((item_id, executor.submit(
                    _visit_folder, client, analyzer, item_id, path, depth, parent_id,
                    depth < max_depth, phantom_check, only_user)))

            result.folders_per_level[depth] = len(futures)
            next_level = []
            for item_id, future in futures:
                report, sub_folders = future.result()
                result.reports.append(report)
                next_level.extend((child_id, child_path, item_id) for child_id, child_path in sub_folders)

            logger.debug("Level %d: %d folder(s), %d queued for next level", depth, len(futures), len(next_level))
            level = next_level
            depth += 1
    except BaseException:
        # Interrupted: drop queued fetches, do not wait for them
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    result.reports.sort(key=lambda report: (report.depth, report.path))
    return result
