"""
Folder-level inheritance analysis.

Consumer OneDrive exposes no folder-level "inherits permissions" flag, so the
folder status is inferred from its entries. Owner and link entries are left
out of the tally; what remains is counted as inherited or unique:

    inherited  unique   status
    ---------  ------   --------------------------------------------
    0          0        NO_PERMISSIONS
    0          >0       BROKEN
    >0         0        INHERITING (CORRUPTED if a source is phantom)
    >0         >0       MIXED
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, NamedTuple, Optional

from .errors import MalformedEntryError
from .permissions import PermissionEntry, PermissionTag, classify, parse_permissions
from .phantom import ExistenceCheck, PhantomDetector, ProbeResult

logger = logging.getLogger(__name__)


class FolderInheritanceStatus(Enum):
    INHERITING = "inheriting"
    BROKEN = "broken"
    MIXED = "mixed"
    CORRUPTED = "corrupted"
    NO_PERMISSIONS = "no_permissions"


class TaggedPermission(NamedTuple):
    entry: PermissionEntry
    tag: PermissionTag
    probe: Optional[ProbeResult] = None


@dataclass
class FolderAnalysis:
    """Result of analyzing one folder's permission set."""
    status: FolderInheritanceStatus
    tagged: List[TaggedPermission] = field(default_factory=list)
    warnings: List[MalformedEntryError] = field(default_factory=list)
    inherited_count: int = 0
    unique_count: int = 0
    phantom_sources: List[str] = field(default_factory=list)
    unknown_sources: List[str] = field(default_factory=list)

    @property
    def tags(self) -> List[PermissionTag]:
        return [tagged.tag for tagged in self.tagged]

    def entries_with_tag(self, tag: PermissionTag) -> List[PermissionEntry]:
        return [tagged.entry for tagged in self.tagged if tagged.tag is tag]

    def phantom_entries(self) -> List[PermissionEntry]:
        return [tagged.entry for tagged in self.tagged if tagged.probe is ProbeResult.PHANTOM]


class InheritanceAnalyzer:
    """
    Aggregate classified permissions into a folder status.

    Args:
        phantom_detector: Cache used for phantom checks (created when omitted)
        existence_check: Item existence probe, needed only for phantom checks
    """

    def __init__(self, phantom_detector: Optional[PhantomDetector] = None,
                 existence_check: Optional[ExistenceCheck] = None):
        self.phantom_detector = phantom_detector or PhantomDetector()
        self.existence_check = existence_check

    def analyze(self, entries: Iterable[Any], phantom_check_enabled: bool = False) -> FolderInheritanceStatus:
        return self.analyze_folder(entries, phantom_check_enabled).status

    def analyze_folder(self, entries: Iterable[Any], phantom_check_enabled: bool = False) -> FolderAnalysis:
        """
        Classify and tally one folder's permissions.

        Args:
            entries: Raw Graph records and/or PermissionEntry objects
            phantom_check_enabled: Probe inheritance sources of an otherwise
                fully inheriting folder

        Malformed records are skipped and returned as warnings; they never
        fail the call.
        """
        if phantom_check_enabled and self.existence_check is None:
            raise ValueError("Phantom check requested but no existence check configured")

        valid, warnings = parse_permissions(entries)

        # All entries are classified before any counting
        tagged = [TaggedPermission(entry, classify(entry)) for entry in valid]

        inherited_count = sum(1 for t in tagged if t.tag is PermissionTag.INHERITED)
        unique_count = sum(1 for t in tagged if t.tag is PermissionTag.UNIQUE)

        analysis = FolderAnalysis(
            status=FolderInheritanceStatus.NO_PERMISSIONS,
            tagged=tagged,
            warnings=warnings,
            inherited_count=inherited_count,
            unique_count=unique_count,
        )

        if inherited_count == 0 and unique_count == 0:
            analysis.status = FolderInheritanceStatus.NO_PERMISSIONS
        elif inherited_count == 0:
            analysis.status = FolderInheritanceStatus.BROKEN
        elif unique_count == 0:
            analysis.status = FolderInheritanceStatus.INHERITING
            if phantom_check_enabled:
                self._check_phantoms(analysis)
                if analysis.phantom_sources:
                    analysis.status = FolderInheritanceStatus.CORRUPTED
        else:
            analysis.status = FolderInheritanceStatus.MIXED

        return analysis

    def _check_phantoms(self, analysis: FolderAnalysis) -> None:
        results = {}
        for index, tagged in enumerate(analysis.tagged):
            if tagged.tag is not PermissionTag.INHERITED:
                continue

            source_id = tagged.entry.inherited_from.source_id
            if not source_id:
                logger.warning("Permission %s claims inheritance without a source id; assuming it exists",
                               tagged.entry.id)
                analysis.tagged[index] = tagged._replace(probe=ProbeResult.UNKNOWN)
                continue

            if source_id not in results:
                results[source_id] = self.phantom_detector.probe(source_id, self.existence_check)
                if results[source_id] is ProbeResult.PHANTOM:
                    analysis.phantom_sources.append(source_id)
                elif results[source_id] is ProbeResult.UNKNOWN:
                    analysis.unknown_sources.append(source_id)

            analysis.tagged[index] = tagged._replace(probe=results[source_id])
