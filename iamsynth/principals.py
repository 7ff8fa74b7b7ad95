"""
Principals: who a statement is about.

Every principal answers add_to_principal_policy(). Only identity principals
(roles, users) actually keep the statement; all the others report that
nothing was added, which is what sends a grant to the resource policy
instead.
"""
from cutils.deferred import Deferred, Pseudo, value_key

from .errors import ValidationError

__all__ = (
    'AddToPrincipalPolicyResult', 'AddToResourcePolicyResult',
    'PrincipalPolicyFragment', 'PrincipalBase', 'ArnPrincipal',
    'AccountPrincipal', 'ServicePrincipal', 'FederatedPrincipal',
    'AnyPrincipal', 'StarPrincipal',
    'OrganizationPrincipal', 'CompositePrincipal', 'PrincipalWithConditions',
    'merge_conditions', 'copy_conditions',
)


# Partition of whichever stack a statement ends up in; "aws" outside of one
PARTITION = Pseudo('partition', default='aws')


class AddToPrincipalPolicyResult:
    def __init__(self, statement_added, policy_dependable=None):
        self.statement_added = statement_added
        self.policy_dependable = policy_dependable

    def __repr__(self):
        return f"<AddToPrincipalPolicyResult added={self.statement_added}>"


class AddToResourcePolicyResult:
    def __init__(self, statement_added, policy_dependable=None):
        self.statement_added = statement_added
        self.policy_dependable = policy_dependable

    def __repr__(self):
        return f"<AddToResourcePolicyResult added={self.statement_added}>"


class PrincipalPolicyFragment:
    """
    What a principal contributes to a statement: the entries of the
    `Principal` block, plus any conditions that come with it.
    """
    def __init__(self, principal_json, conditions=None):
        self.principal_json = principal_json
        self.conditions = conditions or {}

    @property
    def is_star(self):
        return list(self.principal_json) == ['*']


def copy_conditions(conditions):
    """
    Copy a condition block, without copying the values themselves.
    """
    return {operator: dict(values) for operator, values in conditions.items()}


def merge_conditions(target, source):
    """
    Merge condition blocks ({operator: {key: value}}) into target, in place.
    """
    for operator, values in source.items():
        if not isinstance(values, dict):
            raise ValidationError(
                f"Condition {operator!r} must map condition keys to values"
            )
        target.setdefault(operator, {}).update(values)
    return target


class PrincipalBase:
    """
    Base for principals that cannot hold statements of their own.
    """
    assume_role_action = 'sts:AssumeRole'
    principal_account = None

    @property
    def grant_principal(self):
        return self

    @property
    def policy_fragment(self):
        raise NotImplementedError

    def add_to_principal_policy(self, statement):
        # Nowhere to put it
        return AddToPrincipalPolicyResult(statement_added=False)

    def add_to_policy(self, statement):
        return self.add_to_principal_policy(statement).statement_added

    def with_conditions(self, conditions):
        return PrincipalWithConditions(self, conditions)

    def dedupe_key(self):
        fragment = self.policy_fragment
        return value_key(fragment.principal_json), value_key(fragment.conditions)


class ArnPrincipal(PrincipalBase):
    def __init__(self, arn):
        self.arn = arn

    def __repr__(self):
        arn = self.arn if isinstance(self.arn, str) else repr(self.arn)
        return f"ArnPrincipal({arn})"

    @property
    def policy_fragment(self):
        return PrincipalPolicyFragment({'AWS': [self.arn]})


class AccountPrincipal(ArnPrincipal):
    """
    The root user of an account, i.e. anybody in it the account lets in.
    """
    def __init__(self, account_id):
        super().__init__(Deferred.concat('arn:', PARTITION, ':iam::', account_id, ':root'))
        self.account_id = account_id
        self.principal_account = account_id

    def __repr__(self):
        return f"AccountPrincipal({self.account_id!r})"


class ServicePrincipal(PrincipalBase):
    def __init__(self, service, conditions=None):
        self.service = service
        self.conditions = dict(conditions or {})

    def __repr__(self):
        service = self.service if isinstance(self.service, str) else repr(self.service)
        return f"ServicePrincipal({service})"

    @property
    def policy_fragment(self):
        return PrincipalPolicyFragment({'Service': [self.service]}, dict(self.conditions))


class FederatedPrincipal(PrincipalBase):
    assume_role_action = 'sts:AssumeRoleWithWebIdentity'

    def __init__(self, federated, conditions=None):
        self.federated = federated
        self.conditions = dict(conditions or {})

    def __repr__(self):
        return f"FederatedPrincipal({self.federated})"

    @property
    def policy_fragment(self):
        return PrincipalPolicyFragment({'Federated': [self.federated]}, dict(self.conditions))


class AnyPrincipal(ArnPrincipal):
    """
    Everybody, rendered as {"AWS": "*"}.
    """
    def __init__(self):
        super().__init__('*')

    def __repr__(self):
        return "AnyPrincipal()"


class StarPrincipal(PrincipalBase):
    """
    Everybody, rendered as a bare "*".
    """
    def __repr__(self):
        return "StarPrincipal()"

    @property
    def policy_fragment(self):
        return PrincipalPolicyFragment({'*': ['*']})


class OrganizationPrincipal(PrincipalBase):
    """
    Any principal belonging to the given AWS Organization.
    """
    def __init__(self, organization_id):
        self.organization_id = organization_id

    def __repr__(self):
        return f"OrganizationPrincipal({self.organization_id})"

    @property
    def policy_fragment(self):
        return PrincipalPolicyFragment(
            {'AWS': ['*']},
            {'StringEquals': {'aws:PrincipalOrgID': self.organization_id}},
        )


class PrincipalWithConditions(PrincipalBase):
    """
    Another principal, with extra conditions attached.
    """
    def __init__(self, principal, conditions):
        self.principal = principal
        self.additional_conditions = merge_conditions({}, conditions)

    def __repr__(self):
        return f"{self.principal!r} with conditions"

    @property
    def principal_account(self):
        return self.principal.principal_account

    @property
    def assume_role_action(self):
        return self.principal.assume_role_action

    def add_condition(self, operator, value):
        merge_conditions(self.additional_conditions, {operator: value})

    @property
    def policy_fragment(self):
        fragment = self.principal.policy_fragment
        conditions = merge_conditions(copy_conditions(fragment.conditions), self.additional_conditions)
        return PrincipalPolicyFragment(fragment.principal_json, conditions)

    def add_to_principal_policy(self, statement):
        return self.principal.add_to_principal_policy(statement)


class CompositePrincipal(PrincipalBase):
    """
    Several principals that always appear together.
    """
    def __init__(self, *principals):
        self.principals = []
        self.add_principals(*principals)

    def __repr__(self):
        return f"CompositePrincipal({', '.join(repr(p) for p in self.principals)})"

    def add_principals(self, *principals):
        for p in principals:
            if isinstance(p, CompositePrincipal):
                self.principals.extend(p.principals)
            else:
                self.principals.append(p)
        return self

    @property
    def policy_fragment(self):
        principal_json = {}
        conditions = None
        for p in self.principals:
            fragment = p.policy_fragment
            if conditions is None:
                conditions = dict(fragment.conditions)
            elif value_key(conditions) != value_key(fragment.conditions):
                raise ValidationError(
                    "Components of a CompositePrincipal must not have conflicting conditions"
                )
            for kind, values in fragment.principal_json.items():
                principal_json.setdefault(kind, []).extend(values)
        return PrincipalPolicyFragment(principal_json, conditions)
