from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Optional

from django.db.models import F
from django.utils import timezone

from .errors import Conflict, NotFound, ValidationError
from .models import Device, Remote
from .store import Store

logger = logging.getLogger(__name__)

UNIVERSAL_DEVICE = "universal"
REMOTE_DATA_FIELDS = ("name", "manufacturer", "model", "layout", "buttons")
REMOTE_LAYOUTS = {choice for choice, _ in Remote.LAYOUT_CHOICES}


def normalize_device_id(device_id: Any) -> Optional[Any]:
    """Map the universal marker (``None``, ``""`` or ``"universal"``) to ``None``."""
    if device_id is None:
        return None
    if isinstance(device_id, str) and device_id.strip().lower() in {"", UNIVERSAL_DEVICE}:
        return None
    return device_id


def _same_device(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    try:
        return uuid.UUID(str(left)) == uuid.UUID(str(right))
    except ValueError as exc:
        raise ValidationError("device_id must be a UUID", entity="remote", field="device_id") from exc


class DefaultRemoteEngine:
    """At most one active default remote per device, universal bucket included.

    A bucket is the set of active remotes sharing one ``device_id`` (``None``
    for universal remotes). Every default flip locks the bucket first (the
    device row, or the universal remotes themselves) and clears the old
    default before setting the new one, so the partial unique index on
    ``is_default`` is never transiently violated.
    """

    def __init__(self, store: Store, clock: Callable[[], Any] = timezone.now):
        self.store = store
        self.clock = clock

    def get_remote(self, remote_id: Any) -> Remote:
        remote = self.store.objects(Remote).filter(id=remote_id, is_active=True).first()
        if not remote:
            raise NotFound("Remote not found", entity="remote", entity_id=remote_id)
        return remote

    def create_remote(self, data: Dict[str, Any]) -> Remote:
        device_id = normalize_device_id(data.get("device_id"))
        fields = self._remote_fields(data, creating=True)
        with self.store.atomic():
            self._lock_bucket(device_id)
            make_default = bool(data.get("is_default"))
            if device_id is not None and not self._bucket(device_id).exists():
                # First remote of a concrete device becomes its default.
                make_default = True
            cleared = self._clear_defaults(device_id) if make_default else 0
            remote = self.store.objects(Remote).create(device_id=device_id, is_default=make_default, **fields)
        logger.info(
            "Created remote %s for %s default=%s (cleared %s)",
            remote.id,
            device_id or UNIVERSAL_DEVICE,
            remote.is_default,
            cleared,
        )
        return remote

    def set_as_default(self, remote_id: Any, device_id: Any) -> Remote:
        device_id = normalize_device_id(device_id)
        with self.store.atomic():
            self._lock_bucket(device_id)
            remote = self._bucket(device_id).filter(id=remote_id).first()
            if not remote:
                raise NotFound(
                    "Remote not found for this device",
                    entity="remote",
                    entity_id=remote_id,
                    details={"device_id": str(device_id or UNIVERSAL_DEVICE)},
                )
            if remote.is_default:
                return remote
            cleared = self._clear_defaults(device_id, exclude_id=remote.id)
            remote.is_default = True
            remote.save(update_fields=["is_default", "updated_at"])
        logger.info(
            "Remote %s is now the default for %s (cleared %s)",
            remote.id,
            device_id or UNIVERSAL_DEVICE,
            cleared,
        )
        return remote

    def update_remote(self, remote_id: Any, data: Dict[str, Any]) -> Remote:
        fields = self._remote_fields(data)
        with self.store.atomic():
            remote = self._get_remote(remote_id)
            if "is_default" in data and not data["is_default"] and remote.is_default:
                raise ValidationError(
                    "A default remote cannot be unset directly; make another remote the default instead",
                    entity="remote",
                    entity_id=remote.id,
                    field="is_default",
                )
            dirty_fields = set(fields)
            if "device_id" in data:
                device_id = normalize_device_id(data["device_id"])
                if not _same_device(device_id, remote.device_id):
                    if remote.is_default:
                        raise Conflict(
                            "Cannot move the default remote to another device; reassign the default first",
                            entity="remote",
                            entity_id=remote.id,
                            field="device_id",
                        )
                    self._lock_bucket(device_id)
                    remote.device_id = device_id
                    dirty_fields.add("device")
            for key, value in fields.items():
                setattr(remote, key, value)
            if dirty_fields:
                remote.save(update_fields=sorted(dirty_fields | {"updated_at"}))
            if data.get("is_default") and not remote.is_default:
                self._lock_bucket(remote.device_id)
                self._clear_defaults(remote.device_id, exclude_id=remote.id)
                remote.is_default = True
                remote.save(update_fields=["is_default", "updated_at"])
        logger.info("Updated remote %s", remote.id)
        return remote

    def delete_remote(self, remote_id: Any) -> Remote:
        with self.store.atomic():
            remote = self._get_remote(remote_id)
            if remote.is_default:
                logger.warning("Refused to archive default remote %s", remote.id)
                raise Conflict(
                    "Cannot delete the default remote; make another remote the default first",
                    entity="remote",
                    entity_id=remote.id,
                    field="is_default",
                )
            remote.is_active = False
            remote.save(update_fields=["is_active", "updated_at"])
        logger.info("Archived remote %s", remote.id)
        return remote

    def get_default_for_device(self, device_id: Any) -> Remote:
        device_id = normalize_device_id(device_id)
        with self.store.atomic():
            self._lock_bucket(device_id)
            bucket = self._bucket(device_id)
            remote = bucket.filter(is_default=True).first()
            if remote:
                return remote
            remote = bucket.order_by("-usage_count", "created_at").first() if device_id is not None else None
            if not remote:
                # Universal remotes are only ever made default explicitly.
                raise NotFound(
                    "No remote found for this device",
                    entity="remote",
                    details={"device_id": str(device_id or UNIVERSAL_DEVICE)},
                )
            remote.is_default = True
            remote.save(update_fields=["is_default", "updated_at"])
        logger.info("Promoted most used remote %s to default for %s", remote.id, device_id or UNIVERSAL_DEVICE)
        return remote

    def increment_usage(self, remote_id: Any) -> Remote:
        with self.store.atomic():
            remote = self._get_remote(remote_id)
            now = self.clock()
            self.store.objects(Remote).filter(id=remote.id).update(
                usage_count=F("usage_count") + 1,
                last_used=now,
                updated_at=now,
            )
            remote.refresh_from_db(fields=["usage_count", "last_used", "updated_at"])
        return remote

    def duplicate_remote(self, remote_id: Any, overrides: Optional[Dict[str, Any]] = None) -> Remote:
        overrides = dict(overrides or {})
        original = self.get_remote(remote_id)
        data = {
            "device_id": original.device_id,
            "name": f"{original.name} (copy)",
            "manufacturer": original.manufacturer,
            "model": original.model,
            "layout": original.layout,
            "buttons": list(original.buttons or []),
        }
        data.update({key: value for key, value in overrides.items() if key in REMOTE_DATA_FIELDS or key == "device_id"})
        data["is_default"] = False
        return self.create_remote(data)

    def _bucket(self, device_id: Any):
        qs = self.store.objects(Remote).filter(is_active=True)
        if device_id is None:
            return qs.filter(device__isnull=True)
        return qs.filter(device_id=device_id)

    def _lock_bucket(self, device_id: Any) -> None:
        if device_id is None:
            list(self.store.locked(Remote).filter(is_active=True, device__isnull=True).values_list("id", flat=True))
            return
        if not self.store.locked(Device).filter(id=device_id, is_active=True).first():
            raise NotFound("Device not found or inactive", entity="device", entity_id=device_id, field="device_id")

    def _clear_defaults(self, device_id: Any, exclude_id: Any = None) -> int:
        qs = self._bucket(device_id).filter(is_default=True)
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        return qs.update(is_default=False, updated_at=self.clock())

    def _get_remote(self, remote_id: Any) -> Remote:
        remote = self.store.locked(Remote).filter(id=remote_id, is_active=True).first()
        if not remote:
            raise NotFound("Remote not found", entity="remote", entity_id=remote_id)
        return remote

    def _remote_fields(self, data: Dict[str, Any], creating: bool = False) -> Dict[str, Any]:
        fields = {key: data[key] for key in REMOTE_DATA_FIELDS if key in data}
        if creating and not str(fields.get("name") or "").strip():
            raise ValidationError("name is required", entity="remote", field="name")
        if "layout" in fields and fields["layout"] not in REMOTE_LAYOUTS:
            raise ValidationError(
                f"layout must be one of: {', '.join(sorted(REMOTE_LAYOUTS))}", entity="remote", field="layout"
            )
        return fields
