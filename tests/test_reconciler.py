#!/usr/bin/env python3
"""
Unit tests for the object reconciler.

The directory client is replaced by an in-memory fake, so the full
read -> diff -> modify -> re-read cycle runs without a server.
"""

import os
import sys
import unittest
from unittest.mock import Mock

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap_reconcile.delta import Add, Remove, Replace
from ldap_reconcile.entry import DeclaredObject, DirectoryEntry
from ldap_reconcile.errors import ImmutableDNError, NotFoundError, ProtocolError, ReconcileError
from ldap_reconcile.ldap_client import DirectoryClient
from ldap_reconcile.normalizer import attribute_set
from ldap_reconcile.reconciler import CREATE, NOOP, UPDATE, ObjectReconciler, classes_changed


DN = 'cn=admins,ou=groups,dc=example,dc=com'


class FakeDirectory:
    """In-memory stand-in for DirectoryClient."""

    def __init__(self):
        self.entries = {}
        self.calls = []

    def exists(self, dn):
        return dn in self.entries

    def search_entry(self, dn):
        self.calls.append(('search', dn))
        if dn not in self.entries:
            raise NotFoundError(dn)
        entry = self.entries[dn]
        return DirectoryEntry(
            dn=entry.dn,
            object_classes=list(entry.object_classes),
            attributes={k: list(v) for k, v in entry.attributes.items()},
        )

    def add(self, dn, object_classes, attributes):
        self.calls.append(('add', dn))
        rdn_name, rdn_value = dn.split(',', 1)[0].split('=', 1)
        stored = {rdn_name: [rdn_value]}
        stored.update({k: list(v) for k, v in attributes.items()})
        self.entries[dn] = DirectoryEntry(dn=dn, object_classes=list(object_classes), attributes=stored)

    def modify(self, dn, deltas, object_classes=None):
        self.calls.append(('modify', dn, list(deltas), object_classes))
        if dn not in self.entries:
            raise NotFoundError(dn)
        entry = self.entries[dn]
        if object_classes is not None:
            entry.object_classes = list(object_classes)
        for delta in deltas:
            if isinstance(delta, Remove):
                entry.attributes.pop(delta.name, None)
            elif isinstance(delta, Add):
                entry.attributes.setdefault(delta.name, []).extend(delta.values)
            else:
                entry.attributes[delta.name] = list(delta.values)

    def delete(self, dn):
        self.calls.append(('delete', dn))
        if dn not in self.entries:
            raise NotFoundError(dn)
        del self.entries[dn]


def group(attributes, object_classes=('groupOfNames', 'top'), skip=()):
    return DeclaredObject(dn=DN, object_classes=list(object_classes), attributes=attributes, skip_attributes=list(skip))


class StubbornDirectory(FakeDirectory):
    """Accepts every modify but never changes the named attribute."""

    def __init__(self, ignored):
        super().__init__()
        self.ignored = ignored

    def modify(self, dn, deltas, object_classes=None):
        super().modify(dn, [d for d in deltas if d.name != self.ignored], object_classes)


class TestReconcilerMapMode(unittest.TestCase):
    """Lifecycle tests with map-mode attributes."""

    def setUp(self):
        self.directory = FakeDirectory()
        self.reconciler = ObjectReconciler(self.directory)
        self.desired = group({'description': 'Admins', 'member': '["uid=a,dc=example,dc=com","uid=b,dc=example,dc=com"]'})

    def test_read_missing_returns_none(self):
        self.assertIsNone(self.reconciler.read(self.desired))

    def test_create_then_read(self):
        live = self.reconciler.create(self.desired)
        self.assertEqual(live.attributes, self.desired.attributes)
        self.assertEqual(live.object_classes, ['groupOfNames', 'top'])
        stored = self.directory.entries[DN].attributes
        self.assertEqual(stored['member'], ['uid=a,dc=example,dc=com', 'uid=b,dc=example,dc=com'])

    def test_create_excludes_skipped(self):
        desired = group({'description': 'Admins', 'memberOf': 'x'}, skip=['memberOf'])
        self.reconciler.create(desired)
        self.assertNotIn('memberOf', self.directory.entries[DN].attributes)

    def test_update_applies_deltas(self):
        current = self.reconciler.create(self.desired)
        desired = group({'member': '["uid=a,dc=example,dc=com"]', 'businessCategory': 'IT'})

        live = self.reconciler.update(current, desired)

        modify = [c for c in self.directory.calls if c[0] == 'modify'][0]
        self.assertEqual(modify[2], [
            Remove('description'),
            Add('businessCategory', ['IT']),
            Replace('member', ['uid=a,dc=example,dc=com']),
        ])
        self.assertIsNone(modify[3])
        self.assertEqual(live.attributes, {'member': 'uid=a,dc=example,dc=com', 'businessCategory': 'IT'})

    def test_update_object_classes(self):
        current = self.reconciler.create(self.desired)
        desired = group(self.desired.attributes, object_classes=['groupOfNames', 'top', 'extensibleObject'])
        live = self.reconciler.update(current, desired)
        self.assertIn('extensibleObject', live.object_classes)

    def test_update_missing_object(self):
        current = group({'description': 'x'})
        with self.assertRaises(NotFoundError):
            self.reconciler.update(current, group({'description': 'y'}))

    def test_plan_rejects_dn_change(self):
        other = DeclaredObject(dn='cn=other,dc=example,dc=com', object_classes=['top'])
        with self.assertRaises(ImmutableDNError):
            self.reconciler.plan(self.desired, other)

    def test_dn_change_is_a_reconcile_error(self):
        self.assertTrue(issubclass(ImmutableDNError, ReconcileError))
        self.assertTrue(issubclass(ImmutableDNError, ValueError))

    def test_plan_accepts_dn_spelling_differences(self):
        current = DeclaredObject(dn=DN, object_classes=['groupOfNames', 'top'], attributes={'description': 'Admins'})
        desired = group({'description': 'Admins'})
        desired.dn = 'CN=admins, ou=groups, dc=example, dc=com'
        self.assertEqual(self.reconciler.plan(current, desired).action, NOOP)

    def test_update_without_current_state(self):
        with self.assertRaises(NotFoundError):
            self.reconciler.update(None, self.desired)
        self.assertEqual(self.directory.calls, [])

    def test_plan_ignores_skipped_attributes(self):
        current = group({'description': 'x', 'memberOf': 'a'}, skip=['memberOf'])
        desired = group({'description': 'x'}, skip=['memberOf'])
        self.assertEqual(self.reconciler.plan(current, desired).action, NOOP)

    def test_delete(self):
        self.reconciler.create(self.desired)
        self.reconciler.delete(self.desired)
        self.assertNotIn(DN, self.directory.entries)

    def test_delete_missing(self):
        with self.assertRaises(NotFoundError):
            self.reconciler.delete(self.desired)

    def test_delete_missing_ok(self):
        self.reconciler.delete(self.desired, missing_ok=True)

    def test_exists(self):
        self.assertFalse(self.reconciler.exists(self.desired))
        self.reconciler.create(self.desired)
        self.assertTrue(self.reconciler.exists(self.desired))


class TestReconcilerSetMode(unittest.TestCase):
    """Lifecycle tests with set-mode attributes."""

    def setUp(self):
        self.directory = FakeDirectory()
        self.reconciler = ObjectReconciler(self.directory)

    def test_read_projects_to_set(self):
        desired = group(attribute_set([{'member': 'uid=a'}, {'member': 'uid=b'}]))
        self.reconciler.create(desired)
        live = self.reconciler.read(desired)
        self.assertEqual(live.attributes, desired.attributes)
        self.assertTrue(live.set_mode)

    def test_mixed_change_replaces_whole_attribute(self):
        current = self.reconciler.create(group(attribute_set([{'member': 'uid=a'}, {'member': 'uid=b'}])))
        desired = group(attribute_set([{'member': 'uid=a'}, {'member': 'uid=c'}]))

        live = self.reconciler.update(current, desired)

        modify = [c for c in self.directory.calls if c[0] == 'modify'][0]
        self.assertEqual(modify[2], [Replace('member', ['uid=a', 'uid=c'])])
        self.assertEqual(live.attributes, desired.attributes)


class TestApply(unittest.TestCase):
    """Tests for converging declared objects."""

    def setUp(self):
        self.directory = FakeDirectory()
        self.reconciler = ObjectReconciler(self.directory)
        self.desired = group({'description': 'Admins'})

    def test_creates_missing(self):
        plan = self.reconciler.apply(self.desired)
        self.assertEqual(plan.action, CREATE)
        self.assertIn(DN, self.directory.entries)

    def test_updates_drift(self):
        self.reconciler.apply(self.desired)
        self.directory.entries[DN].attributes['description'] = ['Changed by hand']

        plan = self.reconciler.apply(self.desired)

        self.assertEqual(plan.action, UPDATE)
        self.assertEqual(plan.deltas, [Replace('description', ['Admins'])])
        self.assertEqual(self.directory.entries[DN].attributes['description'], ['Admins'])

    def test_converged_is_noop(self):
        self.reconciler.apply(self.desired)
        self.directory.calls.clear()

        plan = self.reconciler.apply(self.desired)

        self.assertEqual(plan.action, NOOP)
        self.assertEqual([c[0] for c in self.directory.calls], ['search'])

    def test_converged_after_write(self):
        self.assertTrue(self.reconciler.apply(self.desired).converged)
        self.directory.entries[DN].attributes['description'] = ['Changed by hand']
        self.assertTrue(self.reconciler.apply(self.desired).converged)

    def test_ignored_delta_is_not_converged(self):
        directory = StubbornDirectory(ignored='description')
        reconciler = ObjectReconciler(directory)
        reconciler.apply(self.desired)
        directory.entries[DN].attributes['description'] = ['Changed by hand']

        plan = reconciler.apply(self.desired)

        self.assertEqual(plan.action, UPDATE)
        self.assertFalse(plan.converged)
        self.assertEqual([c[0] for c in directory.calls[-3:]], ['search', 'modify', 'search'])

    def test_dry_run_writes_nothing(self):
        plan = self.reconciler.apply(self.desired, dry_run=True)
        self.assertEqual(plan.action, CREATE)
        self.assertEqual(self.directory.entries, {})

    def test_protocol_error_propagates(self):
        client = Mock(spec=DirectoryClient)
        client.search_entry.side_effect = ProtocolError('insufficientAccessRights')
        with self.assertRaises(ProtocolError):
            ObjectReconciler(client).apply(self.desired)


class TestClassesChanged(unittest.TestCase):

    def test_order_and_case_ignored(self):
        self.assertFalse(classes_changed(['top', 'person'], ['Person', 'TOP']))

    def test_added_class(self):
        self.assertTrue(classes_changed(['top'], ['top', 'person']))


if __name__ == '__main__':
    unittest.main()
