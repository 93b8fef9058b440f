from django.db import IntegrityError, transaction
from django.test import TestCase

from diagnostics.errors import Conflict, NotFound, ValidationError
from diagnostics.models import Device, Remote
from diagnostics.remotes import DefaultRemoteEngine
from diagnostics.store import Store


class DefaultRemoteEngineTests(TestCase):
    def setUp(self):
        self.engine = DefaultRemoteEngine(Store())
        self.device = Device.objects.create(name="Projector")

    def _remote(self, name: str, device=None, **kwargs) -> Remote:
        data = {"name": name, "device_id": (device or self.device).id}
        data.update(kwargs)
        return self.engine.create_remote(data)

    def _defaults(self, device_id):
        return list(Remote.objects.filter(device_id=device_id, is_active=True, is_default=True))

    def test_first_remote_of_device_becomes_default(self):
        first = self._remote("Original")
        second = self._remote("Spare")
        self.assertTrue(first.is_default)
        self.assertFalse(second.is_default)

    def test_set_as_default_moves_the_flag(self):
        r1 = self._remote("R1")
        r2 = self._remote("R2")
        self.engine.set_as_default(r2.id, self.device.id)
        r1.refresh_from_db()
        r2.refresh_from_db()
        self.assertFalse(r1.is_default)
        self.assertTrue(r2.is_default)
        self.assertEqual(self._defaults(self.device.id), [r2])

    def test_set_as_default_is_idempotent(self):
        r1 = self._remote("R1")
        self.engine.set_as_default(r1.id, self.device.id)
        self.engine.set_as_default(r1.id, self.device.id)
        self.assertEqual(self._defaults(self.device.id), [r1])

    def test_set_as_default_requires_remote_in_bucket(self):
        other = Device.objects.create(name="Soundbar")
        foreign = self._remote("Foreign", device=other)
        with self.assertRaises(NotFound):
            self.engine.set_as_default(foreign.id, self.device.id)
        with self.assertRaises(NotFound):
            self.engine.set_as_default(foreign.id, "00000000-0000-0000-0000-000000000000")

    def test_create_default_clears_previous(self):
        r1 = self._remote("R1")
        r3 = self._remote("R3", is_default=True)
        r1.refresh_from_db()
        self.assertFalse(r1.is_default)
        self.assertTrue(r3.is_default)
        self.assertEqual(self._defaults(self.device.id), [r3])

    def test_buckets_are_independent(self):
        other = Device.objects.create(name="Soundbar")
        mine = self._remote("Mine")
        theirs = self._remote("Theirs", device=other)
        universal = self.engine.create_remote({"name": "Universal", "device_id": "universal", "is_default": True})
        mine.refresh_from_db()
        theirs.refresh_from_db()
        self.assertTrue(mine.is_default)
        self.assertTrue(theirs.is_default)
        self.assertTrue(universal.is_default)
        self.assertIsNone(universal.device_id)

    def test_universal_bucket_holds_one_default(self):
        u1 = self.engine.create_remote({"name": "U1", "device_id": None})
        self.assertFalse(u1.is_default)
        u2 = self.engine.create_remote({"name": "U2", "is_default": True})
        self.engine.set_as_default(u1.id, "universal")
        u1.refresh_from_db()
        u2.refresh_from_db()
        self.assertTrue(u1.is_default)
        self.assertFalse(u2.is_default)
        self.assertEqual(self.engine.get_default_for_device(None), u1)

    def test_delete_default_conflicts(self):
        r1 = self._remote("R1")
        r2 = self._remote("R2")
        with self.assertRaises(Conflict):
            self.engine.delete_remote(r1.id)
        self.engine.delete_remote(r2.id)
        r2.refresh_from_db()
        self.assertFalse(r2.is_active)

    def test_get_default_promotes_most_used(self):
        r1 = self._remote("R1")
        r2 = self._remote("R2")
        self.engine.increment_usage(r2.id)
        self.engine.increment_usage(r2.id)
        Remote.objects.filter(id=r1.id).update(is_default=False)
        promoted = self.engine.get_default_for_device(self.device.id)
        self.assertEqual(promoted, r2)
        self.assertEqual(self._defaults(self.device.id), [r2])

    def test_universal_bucket_is_never_promoted(self):
        u1 = self.engine.create_remote({"name": "U1", "device_id": None})
        self.engine.increment_usage(u1.id)
        with self.assertRaises(NotFound):
            self.engine.get_default_for_device("universal")
        u1.refresh_from_db()
        self.assertFalse(u1.is_default)

    def test_update_with_same_device_in_other_case_is_not_a_move(self):
        r1 = self._remote("R1")
        updated = self.engine.update_remote(r1.id, {"device_id": str(self.device.id).upper(), "name": "Main"})
        self.assertEqual(updated.name, "Main")
        self.assertTrue(updated.is_default)
        self.assertEqual(updated.device_id, self.device.id)
        with self.assertRaises(ValidationError):
            self.engine.update_remote(r1.id, {"device_id": "not-a-uuid"})

    def test_get_default_for_empty_bucket_is_not_found(self):
        with self.assertRaises(NotFound):
            self.engine.get_default_for_device(self.device.id)
        with self.assertRaises(NotFound):
            self.engine.get_default_for_device("universal")

    def test_increment_usage(self):
        r1 = self._remote("R1")
        r1 = self.engine.increment_usage(r1.id)
        self.assertEqual(r1.usage_count, 1)
        self.assertIsNotNone(r1.last_used)

    def test_update_remote_rules(self):
        r1 = self._remote("R1")
        r2 = self._remote("R2")
        with self.assertRaises(ValidationError):
            self.engine.update_remote(r1.id, {"is_default": False})
        other = Device.objects.create(name="Soundbar")
        with self.assertRaises(Conflict):
            self.engine.update_remote(r1.id, {"device_id": str(other.id)})
        updated = self.engine.update_remote(r2.id, {"name": "R2 renamed", "is_default": True})
        self.assertEqual(updated.name, "R2 renamed")
        self.assertEqual(self._defaults(self.device.id), [r2])
        with self.assertRaises(ValidationError):
            self.engine.update_remote(r2.id, {"layout": "round"})

    def test_duplicate_never_takes_over_default(self):
        r1 = self._remote("R1")
        copy = self.engine.duplicate_remote(r1.id, {"is_default": True})
        self.assertEqual(copy.name, "R1 (copy)")
        self.assertFalse(copy.is_default)
        self.assertEqual(copy.usage_count, 0)
        self.assertEqual(self._defaults(self.device.id), [r1])

    def test_database_rejects_second_default(self):
        r1 = self._remote("R1")
        r2 = self._remote("R2")
        with self.assertRaises(IntegrityError), transaction.atomic():
            Remote.objects.filter(id=r2.id).update(is_default=True)
        self.assertEqual(self._defaults(self.device.id), [r1])
