"""Builders for raw Microsoft Graph permission records."""


def owner_record(perm_id="owner-1", **extra):
    record = {
        "id": perm_id,
        "roles": ["owner"],
        "grantedTo": {"user": {"displayName": "Drive Owner", "email": "owner@example.com"}},
    }
    record.update(extra)
    return record


def inherited_record(perm_id, source_id="parent-1", path="/drive/root:/Documents", email="reader@example.com"):
    return {
        "id": perm_id,
        "roles": ["read"],
        "inheritedFrom": {"id": source_id, "path": path, "driveId": "drive-1"},
        "grantedToV2": {"user": {"displayName": "Reader", "email": email}},
    }


def unique_record(perm_id, email="editor@example.com", roles=("write",)):
    return {
        "id": perm_id,
        "roles": list(roles),
        "grantedToIdentitiesV2": [{"user": {"displayName": "Editor", "email": email}}],
    }


def link_record(perm_id, scope="anonymous", link_type="view"):
    return {
        "id": perm_id,
        "roles": ["read"],
        "link": {"scope": scope, "type": link_type, "webUrl": f"https://1drv.ms/f/{perm_id}"},
    }


