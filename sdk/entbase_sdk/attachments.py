"""
Attachment resolution for EntBase SDK.

File-list fields hold attachment ids. The ids are read from the attachment
table in one batched read per operation and written into the flat record.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence

from .errors import ResolutionError
from .schema import Attachment, FieldSpec
from .store import EntityStore, StoreError

logger = logging.getLogger(__name__)

AttachmentMap = Dict[str, Dict[str, List[str]]]


class AttachmentResolver:
    """Batched attachment id lookup."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def resolve(
        self, fields: Sequence[FieldSpec], instance_ids: Sequence[str]
    ) -> AttachmentMap:
        """Attachment ids per instance per file-list field, oldest first.

        Raises:
            ResolutionError: If the attachment read fails
        """
        file_fields = {f.id: f for f in fields if f.is_file_list}
        if not file_fields or not instance_ids:
            return {}

        try:
            rows = await self._store.get_attachments(list(instance_ids), list(file_fields))
        except StoreError as e:
            instance_id = instance_ids[0] if len(instance_ids) == 1 else None
            raise ResolutionError(
                "load_attachments", f"Failed to load attachments: {e.message}", instance_id, cause=e
            ) from e

        result: AttachmentMap = {}
        for attachment in map(Attachment.from_row, rows):
            field_spec = file_fields.get(attachment.field_id or "")
            if field_spec is None:
                continue
            per_instance = result.setdefault(attachment.instance_id, {})
            per_instance.setdefault(field_spec.name, []).append(attachment.id)
        return result


def apply_attachments(
    data: MutableMapping[str, Any],
    file_fields: Sequence[FieldSpec],
    resolved: Mapping[str, List[str]],
) -> MutableMapping[str, Any]:
    """Write resolved ids into data.

    A field is overwritten when it has attachments or no truthy raw value;
    a raw value with zero attachments is kept.
    """
    for f in file_fields:
        if not f.is_file_list:
            continue
        ids = resolved.get(f.name, [])
        if ids or not data.get(f.name):
            data[f.name] = list(ids)
    return data
