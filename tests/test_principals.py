import pytest

from cutils import ResolveContext, resolve_value, opts
from iamsynth import (
    AccountPrincipal, CompositePrincipal, FederatedPrincipal, PolicyStatement,
    ServicePrincipal, ValidationError,
)
from iamsynth.aws import AwsStack, Role, User


def test_non_identity_principals_hold_nothing():
    stmt = PolicyStatement(actions=['s3:GetObject'], resources=['*'])
    for principal in (ServicePrincipal('s3.amazonaws.com'), AccountPrincipal('123456789012')):
        result = principal.add_to_principal_policy(stmt)
        assert not result.statement_added
        assert result.policy_dependable is None
        assert not principal.add_to_policy(stmt)


def test_account_principal():
    principal = AccountPrincipal('123456789012')
    principal_json = resolve_value(principal.policy_fragment.principal_json, ResolveContext())
    assert principal_json == {'AWS': ['arn:aws:iam::123456789012:root']}
    assert principal.principal_account == '123456789012'


def test_account_principal_with_deferred_account(stack):
    principal = AccountPrincipal(stack.account)
    arn = principal.policy_fragment.principal_json['AWS'][0]
    rendered = resolve_value(arn, ResolveContext(stack))
    account = stack.caller_identity.account_id.expression()
    partition = stack.partition_info.partition.expression()
    assert rendered == f"arn:{partition}:iam::{account}:root"


def test_account_principal_in_govcloud(app):
    stack = AwsStack('Gov', region='us-gov-west-1', **opts(parent=app))
    stmt = PolicyStatement(actions=['s3:PutObject'], resources=['*'])
    stmt.add_aws_account_principal('048591011584')

    rendered = stmt.to_statement_json(ResolveContext(stack))
    partition = stack.partition_info.partition.expression()
    assert partition.startswith('${data.aws_partition.Partition_')
    assert rendered['Principal'] == {'AWS': f"arn:{partition}:iam::048591011584:root"}


def test_with_conditions():
    principal = ServicePrincipal('sns.amazonaws.com').with_conditions(
        {'ArnLike': {'aws:SourceArn': 'arn:aws:sns:*'}},
    )
    principal.add_condition('StringEquals', {'aws:SourceAccount': '1'})
    stmt = PolicyStatement(actions=['sqs:SendMessage'], principals=[principal], resources=['*'])
    assert stmt.to_statement_json()['Condition'] == {
        'ArnLike': {'aws:SourceArn': 'arn:aws:sns:*'},
        'StringEquals': {'aws:SourceAccount': '1'},
    }


def test_composite_principal():
    principal = CompositePrincipal(
        ServicePrincipal('ec2.amazonaws.com'),
        CompositePrincipal(AccountPrincipal('123456789012')),
    )
    assert len(principal.principals) == 2
    assert resolve_value(principal.policy_fragment.principal_json, ResolveContext()) == {
        'Service': ['ec2.amazonaws.com'],
        'AWS': ['arn:aws:iam::123456789012:root'],
    }


def test_composite_principal_conflicting_conditions():
    principal = CompositePrincipal(
        ServicePrincipal('ec2.amazonaws.com', {'StringEquals': {'a': 'b'}}),
        ServicePrincipal('ecs.amazonaws.com'),
    )
    with pytest.raises(ValidationError, match="conflicting conditions"):
        principal.policy_fragment


def test_federated_principal():
    principal = FederatedPrincipal('cognito-identity.amazonaws.com')
    assert principal.assume_role_action == 'sts:AssumeRoleWithWebIdentity'


def test_identity_principals_keep_statements(stack):
    user = User('User', **opts(parent=stack))
    stmt = PolicyStatement(actions=['s3:GetObject'], resources=['*'])

    result = user.add_to_principal_policy(stmt)
    assert result.statement_added
    assert result.policy_dependable is user.default_policy
    assert user.default_policy.path == 'Stack/User/DefaultPolicy'
    assert user.principal_account is not None


def test_role_trust_policy(stack):
    role = Role('Role', assumed_by=ServicePrincipal('lambda.amazonaws.com'), **opts(parent=stack))
    assert role.assume_role_policy.to_document_json()['Statement'] == [{
        'Effect': 'Allow',
        'Action': 'sts:AssumeRole',
        'Principal': {'Service': 'lambda.amazonaws.com'},
    }]
    assert role.default_policy is None


def test_identity_principal_in_resource_policy(stack):
    role = Role('Role', assumed_by=ServicePrincipal('lambda.amazonaws.com'), **opts(parent=stack))
    stmt = PolicyStatement(actions=['sqs:SendMessage'], principals=[role], resources=['*'])
    assert stmt.to_statement_json()['Principal'] == {'AWS': role.arn.expression()}
