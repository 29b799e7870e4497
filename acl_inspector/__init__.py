"""
OneDrive ACL Inspector Package

This package classifies OneDrive permissions, infers whether folders inherit
their ACL (spotting inheritance from deleted ancestors), and manages explicit
grants through the Microsoft Graph API. Credentials come from token.json,
refreshed on demand, with the rclone.conf token as a read-only fallback.

Modules:
- permissions: Permission entries and per-entry classification
- phantom: Cached existence probes for inheritance sources
- inheritance: Folder inheritance status
- credentials / token_store / oauth: Credential model, storage and refresh
- coordinator: Credential lifecycle and capability gate
- config_utils: Settings and rclone configuration
- graph_client: Microsoft Graph access
- acl_scanner: Recursive folder scan
- acl_manager: Command line interface
"""

__version__ = "1.0.0"
__author__ = "OneDrive ACL Project"
