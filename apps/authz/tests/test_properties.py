"""
Property-based tests for resolution precedence, change collapsing and risk scoring.
"""
from hypothesis import given, settings, strategies as st

from apps.authz.catalog import PermissionCatalog
from apps.authz.changes import Change, ChangeSet, PendingChange
from apps.authz.resolver import AccessState, resolve_module_value, resolve_permission_value
from apps.authz.risk import BASE_WEIGHTS, MAX_SCORE, MIN_SCORE, score_event
from apps.authz.roles import Role

roles = st.sampled_from([Role.USER, Role.ADMIN, Role.SUPER_ADMIN])
module_ids = st.sampled_from(PermissionCatalog.module_ids())
permission_keys = st.sampled_from(PermissionCatalog.permission_keys())


@st.composite
def access_states(draw):
    return AccessState(
        role=draw(roles),
        company_id='c1',
        overrides=draw(st.dictionaries(permission_keys, st.booleans(), max_size=6)),
        company_modules=draw(st.sets(module_ids, max_size=8)),
        user_modules=draw(st.dictionaries(module_ids, st.booleans(), max_size=6)),
    )


risk_contexts = st.fixed_dictionaries({}, optional={
    'hour': st.integers(min_value=0, max_value=23),
    'business_hours': st.just([6, 22]),
    'prior_failed_logins': st.integers(min_value=0, max_value=50),
    'role_before': roles,
    'role_after': roles,
    'cross_tenant': st.booleans(),
    'super_tier': st.booleans(),
    'sensitive': st.booleans(),
    'is_noop': st.booleans(),
})


class TestResolutionProperties:

    @settings(max_examples=200, deadline=None)
    @given(state=access_states(), module_id=module_ids)
    def test_company_gate_dominates(self, state, module_id):
        value = resolve_module_value(state, module_id)

        if state.role == Role.SUPER_ADMIN:
            assert value is True
        elif module_id not in state.company_modules:
            assert value is False
        elif PermissionCatalog.is_required_module(module_id):
            assert value is True
        else:
            assert value == state.user_modules.get(module_id, False)

    @settings(max_examples=200, deadline=None)
    @given(state=access_states(), key=permission_keys)
    def test_override_beats_role_default(self, state, key):
        value = resolve_permission_value(state, key)

        if state.role == Role.SUPER_ADMIN:
            assert value is True
        elif key in state.overrides:
            assert value == state.overrides[key]


class TestChangeSetProperties:

    @settings(max_examples=200, deadline=None)
    @given(baseline=st.booleans(), edits=st.lists(st.booleans(), min_size=1, max_size=8))
    def test_edits_of_one_key_collapse(self, baseline, edits):
        changes = ChangeSet()
        for desired in edits:
            change = Change.grant_permission('expenses.approve') if desired else Change.revoke_permission('expenses.approve')
            changes.add(PendingChange('u1', change, baseline=baseline))

        assert len(changes) <= 1
        if changes:
            [entry] = changes.changes()
            assert entry.change.desired == edits[-1]
            assert entry.baseline == baseline
        else:
            assert edits[-1] == baseline


class TestRiskProperties:

    @settings(max_examples=300, deadline=None)
    @given(action=st.sampled_from(sorted(BASE_WEIGHTS)), context=risk_contexts)
    def test_score_is_bounded_and_deterministic(self, action, context):
        score = score_event(action, context)

        assert MIN_SCORE <= score <= MAX_SCORE
        assert score_event(action, dict(context)) == score

    @settings(max_examples=200, deadline=None)
    @given(action=st.sampled_from(sorted(BASE_WEIGHTS)), context=risk_contexts)
    def test_cross_tenant_never_lowers_score(self, action, context):
        without = score_event(action, {**context, 'cross_tenant': False})
        with_flag = score_event(action, {**context, 'cross_tenant': True})
        assert with_flag >= without
