"""
A single authorization rule.

Statements are built up incrementally (actions, resources and principals can
be added in any order, from several places) and only checked for
completeness when the document holding them is finalized. After that they
are frozen.
"""
import enum
import re

from cutils.deferred import ResolveContext, resolve_value, value_key

from .errors import ValidationError
from .principals import (
    AnyPrincipal, ArnPrincipal, ServicePrincipal, FederatedPrincipal,
    StarPrincipal, AccountPrincipal, merge_conditions, copy_conditions,
)

__all__ = 'Effect', 'PolicyStatement'

_ACTION_RE = re.compile(r'^(\*|[a-zA-Z0-9-]+:[a-zA-Z0-9*]+)$')


class Effect(enum.Enum):
    ALLOW = 'Allow'
    DENY = 'Deny'


class PolicyStatement:
    def __init__(self, *, sid=None, effect=Effect.ALLOW, actions=(), not_actions=(),
                 resources=(), not_resources=(), principals=(), not_principals=(),
                 conditions=None):
        self._frozen = False
        self._sid = sid
        self._effect = Effect(effect)
        self._actions = []
        self._not_actions = []
        self._resources = []
        self._not_resources = []
        self._principals = []
        self._not_principals = []
        self._principal_json = {}
        self._not_principal_json = {}
        self._principal_conditions = None
        self._conditions = {}

        self.add_actions(*actions)
        self.add_not_actions(*not_actions)
        self.add_resources(*resources)
        self.add_not_resources(*not_resources)
        self.add_principals(*principals)
        self.add_not_principals(*not_principals)
        if conditions:
            self.add_conditions(conditions)

    def __repr__(self):
        actions = self._actions or self._not_actions
        return f"<PolicyStatement {self._effect.value} {', '.join(map(str, actions))}>"

    def _assert_not_frozen(self, what):
        if self._frozen:
            raise ValidationError(
                f"{what}: freeze() has been called on this PolicyStatement previously, "
                "so it can no longer be modified"
            )

    @property
    def frozen(self):
        return self._frozen

    def freeze(self):
        """
        Make the statement immutable. Called when its document is finalized.
        """
        self._frozen = True
        return self

    @property
    def sid(self):
        return self._sid

    @sid.setter
    def sid(self, value):
        self._assert_not_frozen('sid')
        self._sid = value

    @property
    def effect(self):
        return self._effect

    @effect.setter
    def effect(self, value):
        self._assert_not_frozen('effect')
        self._effect = Effect(value)

    # Actions

    def add_actions(self, *actions):
        self._assert_not_frozen('add_actions')
        if actions and self._not_actions:
            raise ValidationError("Cannot add 'Actions' to policy statement if 'NotActions' have been added")
        _validate_actions(actions)
        self._actions.extend(actions)
        return self

    def add_not_actions(self, *not_actions):
        self._assert_not_frozen('add_not_actions')
        if not_actions and self._actions:
            raise ValidationError("Cannot add 'NotActions' to policy statement if 'Actions' have been added")
        _validate_actions(not_actions)
        self._not_actions.extend(not_actions)
        return self

    # Resources

    def add_resources(self, *arns):
        self._assert_not_frozen('add_resources')
        if arns and self._not_resources:
            raise ValidationError("Cannot add 'Resources' to policy statement if 'NotResources' have been added")
        self._resources.extend(arns)
        return self

    def add_not_resources(self, *arns):
        self._assert_not_frozen('add_not_resources')
        if arns and self._resources:
            raise ValidationError("Cannot add 'NotResources' to policy statement if 'Resources' have been added")
        self._not_resources.extend(arns)
        return self

    def add_all_resources(self):
        return self.add_resources('*')

    # Principals

    def add_principals(self, *principals):
        self._assert_not_frozen('add_principals')
        if principals and self._not_principals:
            raise ValidationError("Cannot add 'Principals' to policy statement if 'NotPrincipals' have been added")
        for principal in principals:
            self._add_principal(principal, self._principals, self._principal_json)
        return self

    def add_not_principals(self, *principals):
        self._assert_not_frozen('add_not_principals')
        if principals and self._principals:
            raise ValidationError("Cannot add 'NotPrincipals' to policy statement if 'Principals' have been added")
        for principal in principals:
            self._add_principal(principal, self._not_principals, self._not_principal_json)
        return self

    def _add_principal(self, principal, principals, principal_json):
        fragment = principal.policy_fragment
        conditions_key = value_key(fragment.conditions)
        if self._principal_conditions is None:
            self._principal_conditions = conditions_key
        elif self._principal_conditions != conditions_key:
            raise ValidationError(
                "All principals in a PolicyStatement must have the same Conditions "
                f"(got {principal!r})"
            )
        principals.append(principal)
        for kind, values in fragment.principal_json.items():
            principal_json.setdefault(kind, []).extend(values)
        if fragment.conditions:
            merge_conditions(self._conditions, fragment.conditions)

    def add_any_principal(self):
        return self.add_principals(AnyPrincipal())

    def add_arn_principal(self, arn):
        return self.add_principals(ArnPrincipal(arn))

    def add_aws_account_principal(self, account_id):
        return self.add_principals(AccountPrincipal(account_id))

    add_account_root_principal = add_aws_account_principal

    def add_service_principal(self, service, conditions=None):
        return self.add_principals(ServicePrincipal(service, conditions))

    # Conditions

    def add_condition(self, operator, value):
        """
        Add a condition block, e.g. add_condition('StringEquals', {'aws:SourceAccount': '123'})
        """
        self._assert_not_frozen('add_condition')
        merge_conditions(self._conditions, {operator: value})
        return self

    def add_conditions(self, conditions):
        for operator, value in conditions.items():
            self.add_condition(operator, value)
        return self

    def add_condition_object(self, operator, key, value):
        """
        Add a single condition key, e.g. ('StringEquals', 'aws:SourceArn', arn)
        """
        return self.add_condition(operator, {key: value})

    # Read access

    @property
    def actions(self):
        return list(self._actions)

    @property
    def not_actions(self):
        return list(self._not_actions)

    @property
    def resources(self):
        return list(self._resources)

    @property
    def not_resources(self):
        return list(self._not_resources)

    @property
    def principals(self):
        return list(self._principals)

    @property
    def not_principals(self):
        return list(self._not_principals)

    @property
    def conditions(self):
        return copy_conditions(self._conditions)

    @property
    def has_principal(self):
        return bool(self._principals or self._not_principals)

    @property
    def has_resource(self):
        return bool(self._resources or self._not_resources)

    def copy(self, **overrides):
        """
        An unfrozen copy of this statement, with some fields replaced.
        """
        fields = {
            'sid': self._sid,
            'effect': self._effect,
            'actions': self._actions,
            'not_actions': self._not_actions,
            'resources': self._resources,
            'not_resources': self._not_resources,
            'principals': self._principals,
            'not_principals': self._not_principals,
            'conditions': self.conditions,
        }
        fields.update(overrides)
        stmt = type(self)(**{k: v for k, v in fields.items() if k != 'conditions'})
        # Principal conditions were already folded into our conditions
        stmt._conditions = merge_conditions(stmt._conditions, fields['conditions'] or {})
        return stmt

    # Validation

    def validate_for_any_policy(self):
        errors = []
        if not self._actions and not self._not_actions:
            errors.append("A PolicyStatement must specify at least one 'action' or 'notAction'.")
        return errors

    def validate_for_resource_policy(self):
        errors = self.validate_for_any_policy()
        if not self.has_principal:
            errors.append(
                "A PolicyStatement used in a resource-based policy must specify at least one IAM principal."
            )
        return errors

    def validate_for_identity_policy(self):
        errors = self.validate_for_any_policy()
        if self.has_principal:
            errors.append(
                "A PolicyStatement used in an identity-based policy cannot specify any IAM principals."
            )
        if not self.has_resource:
            errors.append(
                "A PolicyStatement used in an identity-based policy must specify at least one resource."
            )
        return errors

    # Rendering

    def to_statement_json(self, context=None, sid=None):
        """
        Render to the policy wire format.

        Deferred values are resolved through the given context; without one,
        references render as interpolation expressions.
        """
        if context is None:
            context = ResolveContext()
        if sid is None:
            sid = self._sid

        out = {}
        if sid is not None:
            out['Sid'] = sid
        out['Effect'] = self._effect.value
        _put(out, 'Action', self._actions, context)
        _put(out, 'NotAction', self._not_actions, context)
        if self._principal_json:
            out['Principal'] = _render_principals(self._principal_json, context)
        if self._not_principal_json:
            out['NotPrincipal'] = _render_principals(self._not_principal_json, context)
        _put(out, 'Resource', self._resources, context)
        _put(out, 'NotResource', self._not_resources, context)
        if self._conditions:
            out['Condition'] = resolve_value(self._conditions, context)
        return out

    to_json = to_statement_json

    @classmethod
    def from_json(cls, obj):
        """
        Parse a statement from its wire format.
        """
        stmt = cls(
            sid=obj.get('Sid'),
            effect=obj.get('Effect', 'Allow'),
            actions=_ensure_list(obj.get('Action')),
            not_actions=_ensure_list(obj.get('NotAction')),
            resources=_ensure_list(obj.get('Resource')),
            not_resources=_ensure_list(obj.get('NotResource')),
            principals=_parse_principals(obj.get('Principal')),
            not_principals=_parse_principals(obj.get('NotPrincipal')),
        )
        if obj.get('Condition'):
            stmt.add_conditions(obj['Condition'])
        return stmt


def _validate_actions(actions):
    for action in actions:
        if isinstance(action, str) and not _ACTION_RE.match(action):
            raise ValidationError(
                f"Action '{action}' is invalid. An action string consists of a service namespace, "
                "a colon, and the name of an action. Action names can include wildcards."
            )


def _unique(values):
    seen = set()
    out = []
    for value in values:
        key = value_key(value)
        if key not in seen:
            seen.add(key)
            out.append(value)
    return out


def _scalar_or_list(values, context):
    values = [resolve_value(v, context) for v in _unique(values)]
    if len(values) == 1:
        return values[0]
    return values


def _put(out, key, values, context):
    if values:
        out[key] = _scalar_or_list(values, context)


def _render_principals(principal_json, context):
    if list(principal_json) == ['*']:
        return '*'
    return {
        kind: _scalar_or_list(values, context)
        for kind, values in principal_json.items()
    }


def _ensure_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    raise ValidationError(
        f"Fields must be either a string or an array of strings. Got {value!r}"
    )


def _parse_principals(value):
    if value is None:
        return []
    if value == '*':
        return [StarPrincipal()]
    if not isinstance(value, dict):
        raise ValidationError(f"Principal must be '*' or a mapping, got {value!r}")
    principals = []
    for kind, ids in value.items():
        for principal_id in _ensure_list(ids):
            if kind == 'AWS':
                principals.append(AnyPrincipal() if principal_id == '*' else ArnPrincipal(principal_id))
            elif kind == 'Service':
                principals.append(ServicePrincipal(principal_id))
            elif kind == 'Federated':
                principals.append(FederatedPrincipal(principal_id))
            else:
                raise ValidationError(f"Unknown principal type {kind!r}")
    return principals
