"""
Ordered collections of statements.
"""
import json

from cutils.deferred import ResolveContext, value_key

from .statement import PolicyStatement

__all__ = 'PolicyDocument', 'merge_statements', 'POLICY_VERSION'

POLICY_VERSION = '2012-10-17'


class PolicyDocument:
    """
    An ordered list of statements belonging to one principal or resource.

    Order is insertion order and is part of the output: when assign_sids is
    set, statements without an explicit SID get their position ("0", "1",
    ...) as SID when the document is rendered.
    """
    def __init__(self, statements=(), assign_sids=False, minimize=False):
        self._statements = []
        self.assign_sids = assign_sids
        self.minimize = minimize
        self.add_statements(*statements)

    def __repr__(self):
        return f"<PolicyDocument {len(self._statements)} statements>"

    def add_statements(self, *statements):
        # No de-duplication: each call site adds what it means to add
        self._statements.extend(statements)

    @property
    def statements(self):
        return list(self._statements)

    @property
    def statement_count(self):
        return len(self._statements)

    @property
    def is_empty(self):
        return not self._statements

    def freeze(self):
        for stmt in self._statements:
            stmt.freeze()
        return self

    def validate_for_any_policy(self):
        return [e for s in self._statements for e in s.validate_for_any_policy()]

    def validate_for_resource_policy(self):
        return [e for s in self._statements for e in s.validate_for_resource_policy()]

    def validate_for_identity_policy(self):
        return [e for s in self._statements for e in s.validate_for_identity_policy()]

    def to_document_json(self, context=None):
        if context is None:
            context = ResolveContext()
        statements = self._statements
        if self.minimize:
            statements = merge_statements(statements)
        rendered = []
        for index, stmt in enumerate(statements):
            sid = stmt.sid
            if sid is None and self.assign_sids:
                sid = str(index)
            rendered.append(stmt.to_statement_json(context, sid=sid))
        return {
            'Version': POLICY_VERSION,
            'Statement': rendered,
        }

    def to_json(self, context=None):
        return json.dumps(self.to_document_json(context))

    @classmethod
    def from_json(cls, obj, **kwargs):
        statements = obj.get('Statement', [])
        if isinstance(statements, dict):
            statements = [statements]
        return cls(
            [PolicyStatement.from_json(s) for s in statements],
            **kwargs
        )


def _keys(values):
    return [value_key(v) for v in values]


def _principal_keys(principals):
    return [p.dedupe_key() for p in principals]


def _union(left, right, keyfunc):
    seen = set(keyfunc(left))
    out = list(left)
    for item, key in zip(right, keyfunc(right)):
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out


def _merge_pair(a, b):
    """
    Merge b into a if they differ in at most one of actions, resources or
    principals. Returns the merged statement or None.
    """
    if a.sid is not None or b.sid is not None:
        return None
    if a.effect is not b.effect:
        return None
    if value_key(a.conditions) != value_key(b.conditions):
        return None
    for left, right, keyfunc in (
        (a.not_actions, b.not_actions, _keys),
        (a.not_resources, b.not_resources, _keys),
        (a.not_principals, b.not_principals, _principal_keys),
    ):
        if set(keyfunc(left)) != set(keyfunc(right)):
            return None

    fields = {
        'actions': (a.actions, b.actions, _keys),
        'resources': (a.resources, b.resources, _keys),
        'principals': (a.principals, b.principals, _principal_keys),
    }
    differing = [
        name for name, (left, right, keyfunc) in fields.items()
        if set(keyfunc(left)) != set(keyfunc(right))
    ]
    if len(differing) > 1:
        return None
    if not differing:
        return a
    name = differing[0]
    left, right, keyfunc = fields[name]
    return a.copy(**{name: _union(left, right, keyfunc)})


def merge_statements(statements):
    """
    Merge compatible statements, keeping the position of the first of each.
    """
    merged = list(statements)
    changed = True
    while changed:
        changed = False
        out = []
        for stmt in merged:
            for index, existing in enumerate(out):
                combined = _merge_pair(existing, stmt)
                if combined is not None:
                    out[index] = combined
                    changed = True
                    break
            else:
                out.append(stmt)
        merged = out
    return merged
