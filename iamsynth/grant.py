"""
The result of a grantX() call: which policies got a statement, and what a
consumer has to wait on before it can count on the permissions.
"""
import pulumi

from .crossstack import CrossStackReferenceResolver
from .errors import ValidationError
from .statement import PolicyStatement

__all__ = 'Grant',


def _describe(values):
    return ', '.join(v if isinstance(v, str) else repr(v) for v in values)


class Grant:
    """
    Which side(s) of a principal/resource relationship received a statement.

    Don't construct these directly; use the add_to_* factories.
    """
    def __init__(self, *, grantee=None, actions=(), principal_statement=None,
                 resource_statement=None, principal_dependables=(),
                 resource_dependables=(), best_effort_ordering=False):
        self.grantee = grantee
        self.actions = list(actions)
        self.principal_statement = principal_statement
        self.resource_statement = resource_statement
        self.principal_dependables = list(principal_dependables)
        self.resource_dependables = list(resource_dependables)
        self.best_effort_ordering = best_effort_ordering

    def __repr__(self):
        sides = []
        if self.principal_statement_added:
            sides.append('principal')
        if self.resource_statement_added:
            sides.append('resource')
        return f"<Grant {_describe(self.actions)} on {'+'.join(sides) or 'nothing'}>"

    @property
    def principal_statement_added(self):
        return self.principal_statement is not None

    @property
    def resource_statement_added(self):
        return self.resource_statement is not None

    @property
    def success(self):
        """
        Whether the grant ended up in at least one policy.
        """
        return self.principal_statement_added or self.resource_statement_added

    @property
    def dependables(self):
        return self.principal_dependables + self.resource_dependables

    def assert_success(self):
        if not self.success:
            raise ValidationError(
                f"Permissions for '{self.grantee!r}' to call '{_describe(self.actions)}' "
                "could not be added on either the identity or the resource policy."
            )
        return self

    def combine(self, other):
        """
        A grant that is only done when both this and the other one are.
        """
        return Grant(
            grantee=self.grantee,
            actions=self.actions + [a for a in other.actions if a not in self.actions],
            principal_statement=self.principal_statement or other.principal_statement,
            resource_statement=self.resource_statement or other.resource_statement,
            principal_dependables=_merge(self.principal_dependables, other.principal_dependables),
            resource_dependables=_merge(self.resource_dependables, other.resource_dependables),
            best_effort_ordering=self.best_effort_ordering or other.best_effort_ordering,
        )

    def apply_before(self, *constructs):
        """
        Make the given constructs wait for every policy this grant touched.

        Edges that would cross a stack or close a cycle are left out.
        """
        for construct in constructs:
            for attachment in self.dependables:
                if construct.stack is not attachment.stack:
                    pulumi.warn(
                        f"{construct.path} uses a policy from another stack "
                        f"({attachment.path}); ordering is best effort"
                    )
                    continue
                attachment.binder.depend_on_policy(construct)
        return self

    # Factories

    @classmethod
    def drop(cls, grantee, actions):
        """
        A grant that went nowhere, e.g. because the resource is not ours to
        change.
        """
        return cls(grantee=grantee, actions=actions)

    @classmethod
    def add_to_principal(cls, grantee, actions, resource_arns, conditions=None, scope=None):
        """
        Try to put the statement on the principal's own policy.
        """
        _check_actions(actions)
        statement = PolicyStatement(actions=actions, resources=resource_arns, conditions=conditions)
        result = grantee.grant_principal.add_to_principal_policy(statement)
        return cls(
            grantee=grantee,
            actions=actions,
            principal_statement=statement if result.statement_added else None,
            principal_dependables=[result.policy_dependable] if result.policy_dependable else [],
            best_effort_ordering=_crosses_stacks(grantee, scope),
        )

    @classmethod
    def add_to_principal_or_resource(cls, grantee, actions, resource_arns, resource,
                                     resource_self_arns=None, resource_self_statement=None,
                                     key_actions=()):
        """
        Grant on the principal if it can take it, else on the resource.

        If the resource is protected by an encryption key, key_actions are
        granted on the key too, the same way.
        """
        _check_actions(actions)
        grant = cls.add_to_principal(grantee, actions, resource_arns, scope=resource)
        if not grant.success:
            if resource_self_statement is not None:
                statement = resource_self_statement(grantee.grant_principal)
            else:
                statement = PolicyStatement(
                    actions=actions,
                    resources=resource_self_arns or ['*'],
                    principals=[grantee.grant_principal],
                )
            result = resource.add_to_resource_policy(statement)
            grant = cls(
                grantee=grantee,
                actions=actions,
                resource_statement=statement if result.statement_added else None,
                resource_dependables=[result.policy_dependable] if result.policy_dependable else [],
                best_effort_ordering=grant.best_effort_ordering,
            )

        key = getattr(resource, 'encryption_key', None)
        if key is not None and key_actions:
            grant = grant.combine(key.grant(grantee, *key_actions))

        if grant.best_effort_ordering:
            pulumi.debug(
                f"Grant of {_describe(actions)} to {grantee!r} crosses stacks; "
                "ordering is best effort"
            )
        return grant

    @classmethod
    def add_to_principal_and_resource(cls, grantee, actions, resource_arns, resource,
                                      resource_self_arns=None, resource_policy_principal=None):
        """
        Grant on both sides. Used where the resource's own policy has to
        allow the access as well, e.g. keys.
        """
        grant = cls.add_to_principal(grantee, actions, resource_arns, scope=resource)
        statement = PolicyStatement(
            actions=actions,
            resources=resource_self_arns or resource_arns,
            principals=[resource_policy_principal or grantee.grant_principal],
        )
        result = resource.add_to_resource_policy(statement)
        return grant.combine(cls(
            grantee=grantee,
            actions=actions,
            resource_statement=statement if result.statement_added else None,
            resource_dependables=[result.policy_dependable] if result.policy_dependable else [],
        ))


def _check_actions(actions):
    if not actions:
        raise ValidationError("A grant needs at least one action")


def _crosses_stacks(grantee, resource):
    if resource is None:
        return False
    return CrossStackReferenceResolver.is_cross_stack(grantee, resource)


def _merge(left, right):
    return left + [d for d in right if d not in left]
