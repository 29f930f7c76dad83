#!/usr/bin/env python3
"""
Tests for the membership diff engine.
"""

import os
import sys

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from deputize.diff import diff, normalize, same_members, index_identities
from deputize.models import MutationPlan


def test_normalize_sorts_and_deduplicates():
    assert normalize(['bob', 'Alice', 'alice ', 'bob']) == ('alice', 'bob')
    assert normalize([]) == ()
    assert normalize(['', '  ', None]) == ()


def test_same_members_ignores_order_and_case():
    assert same_members(['alice', 'bob'], ['BOB', 'alice'])
    assert not same_members(['alice'], ['alice', 'bob'])


def test_index_keeps_spelling_independent_of_order():
    assert index_identities(['Alice', 'alice'])['alice'] == index_identities(['alice', 'Alice'])['alice']


def test_set_difference():
    plan = diff({'alice', 'bob'}, {'bob', 'carol'})

    assert plan.to_remove == ('carol',)
    assert plan.to_add == ('alice',)
    assert len(plan) == 2
    assert not plan.empty


def test_equal_sets_give_empty_plan():
    plan = diff(['bob', 'alice'], ['ALICE', 'bob', 'bob'])

    assert plan == MutationPlan()
    assert plan.empty
    assert len(plan) == 0


def test_plan_keeps_each_side_spelling():
    plan = diff(['Dave'], ['Carol'])

    assert plan.to_add == ('Dave',)
    assert plan.to_remove == ('Carol',)


def test_protected_members_never_removed():
    plan = diff({'alice'}, {'alice', 'root', 'carol'}, protect={'ROOT'})

    assert plan.to_remove == ('carol',)
    assert 'root' not in plan.to_remove
    assert plan.to_add == ()


def test_protected_member_in_desired_is_not_added_twice():
    plan = diff({'root'}, {'root'}, protect={'root'})
    assert plan.empty


def test_empty_desired_removes_everything_unprotected():
    plan = diff(set(), {'a', 'b', 'c'}, protect={'b'})
    assert plan.to_remove == ('a', 'c')
    assert plan.to_add == ()


def test_plan_is_sorted():
    plan = diff(['zed', 'amy', 'kim'], ['yan', 'bea'])
    assert plan.to_add == ('amy', 'kim', 'zed')
    assert plan.to_remove == ('bea', 'yan')


def test_applying_plan_reaches_desired_state():
    desired = {'alice', 'bob', 'erin'}
    current = {'bob', 'carol', 'dave'}
    plan = diff(desired, current)

    after = (set(current) - set(plan.to_remove)) | set(plan.to_add)

    assert after == desired
    assert diff(desired, after).empty
