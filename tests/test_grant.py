import pytest

from cutils import Construct, opts
from iamsynth import (
    AccountPrincipal, Grant, InvalidPolicyStatement, PolicyStatement, ServicePrincipal,
    ValidationError, synthesize,
)
from iamsynth.aws import (
    Bucket, Key, Queue, Role, Topic, User, BUCKET_READ_ACTIONS, BUCKET_PUT_ACTIONS,
)


class Consumer(Construct):
    pass


def policies(app, stack='Stack'):
    return synthesize(app)[stack]['policies']


def statements(app, path, stack='Stack'):
    return policies(app, stack)[path]['document']['Statement']


@pytest.fixture
def user(stack):
    return User('User', **opts(parent=stack))


@pytest.fixture
def role(stack):
    return Role('Role', assumed_by=ServicePrincipal('lambda.amazonaws.com'), **opts(parent=stack))


def test_publish_to_user(app, stack, user):
    topic = Topic('Topic', **opts(parent=stack))
    grant = topic.grant_publish(user)

    assert grant.success
    assert grant.principal_statement_added
    assert not grant.resource_statement_added
    assert not grant.best_effort_ordering
    assert statements(app, 'Stack/User/DefaultPolicy') == [{
        'Effect': 'Allow',
        'Action': 'sns:Publish',
        'Resource': topic.arn.expression(),
    }]
    assert topic.policy is None
    assert stack.outputs == {}
    assert stack.remote_states == {}


def test_publish_to_user_with_master_key(app, stack, user):
    key = Key('Key', **opts(parent=stack))
    topic = Topic('Topic', master_key=key, **opts(parent=stack))
    topic.grant_publish(user)

    assert statements(app, 'Stack/User/DefaultPolicy') == [
        {
            'Effect': 'Allow',
            'Action': 'sns:Publish',
            'Resource': topic.arn.expression(),
        },
        {
            'Effect': 'Allow',
            'Action': ['kms:Decrypt', 'kms:GenerateDataKey*'],
            'Resource': key.arn.expression(),
        },
    ]
    assert topic.policy is None
    assert key.policy is None


def test_publish_to_service_goes_on_resource(app, stack):
    topic = Topic('Topic', **opts(parent=stack))
    grants = [topic.grant_publish(ServicePrincipal('s3.amazonaws.com')) for _ in range(3)]

    assert all(g.resource_statement_added and not g.principal_statement_added for g in grants)
    rendered = statements(app, 'Stack/Topic/Policy')
    assert [s['Sid'] for s in rendered] == ['0', '1', '2']
    assert rendered[0] == {
        'Sid': '0',
        'Effect': 'Allow',
        'Action': 'sns:Publish',
        'Principal': {'Service': 's3.amazonaws.com'},
        'Resource': topic.arn.expression(),
    }


def test_key_grant_follows_the_data_grant(app, stack):
    key = Key('Key', **opts(parent=stack))
    topic = Topic('Topic', master_key=key, **opts(parent=stack))
    grant = topic.grant_publish(ServicePrincipal('events.amazonaws.com'))

    assert len(grant.resource_dependables) == 2
    assert statements(app, 'Stack/Key/Policy') == [{
        'Effect': 'Allow',
        'Action': ['kms:Decrypt', 'kms:GenerateDataKey*'],
        'Principal': {'Service': 'events.amazonaws.com'},
        'Resource': '*',
    }]


def test_bucket_read(app, stack, role):
    bucket = Bucket('Bucket', **opts(parent=stack))
    bucket.grant_read(role)

    arn = bucket.arn.expression()
    assert statements(app, 'Stack/Role/DefaultPolicy') == [{
        'Effect': 'Allow',
        'Action': BUCKET_READ_ACTIONS,
        'Resource': [arn, f"{arn}/*"],
    }]


def test_bucket_put_to_account(app, stack):
    bucket = Bucket('Bucket', **opts(parent=stack))
    bucket.grant_put(AccountPrincipal('123456789012'), 'uploads/*')

    rendered = statements(app, 'Stack/Bucket/Policy')
    arn = bucket.arn.expression()
    partition = stack.partition_info.partition.expression()
    assert rendered == [{
        'Effect': 'Allow',
        'Action': BUCKET_PUT_ACTIONS,
        'Principal': {'AWS': f"arn:{partition}:iam::123456789012:root"},
        'Resource': f"{arn}/uploads/*",
    }]


def test_queue_with_key(app, stack, role):
    key = Key('Key', **opts(parent=stack))
    queue = Queue('Queue', encryption_key=key, **opts(parent=stack))
    queue.grant_send_messages(role)
    queue.grant_consume_messages(role)

    rendered = statements(app, 'Stack/Role/DefaultPolicy')
    assert [s['Action'] for s in rendered] == [
        ['sqs:SendMessage', 'sqs:GetQueueAttributes', 'sqs:GetQueueUrl'],
        ['kms:Decrypt', 'kms:Encrypt', 'kms:ReEncrypt*', 'kms:GenerateDataKey*'],
        [
            'sqs:ReceiveMessage', 'sqs:ChangeMessageVisibility', 'sqs:GetQueueUrl',
            'sqs:DeleteMessage', 'sqs:GetQueueAttributes',
        ],
        'kms:Decrypt',
    ]


def test_identity_policy_needs_resources(app, stack, role):
    role.add_to_policy(PolicyStatement(actions=['s3:ListAllMyBuckets']))
    with pytest.raises(InvalidPolicyStatement, match="must specify at least one resource"):
        synthesize(app)


def test_empty_actions(stack, user):
    topic = Topic('Topic', **opts(parent=stack))
    with pytest.raises(ValidationError, match="at least one action"):
        Grant.add_to_principal_or_resource(user, [], [topic.arn], topic)


def test_imported_bucket_cannot_take_grants(stack):
    bucket = Bucket.from_bucket_name(stack, 'Imported', 'imported-bucket')
    grant = bucket.grant_read(ServicePrincipal('s3.amazonaws.com'))

    assert not grant.success
    assert bucket.policy is None
    with pytest.raises(ValidationError, match="could not be added"):
        grant.assert_success()


def test_drop(user):
    grant = Grant.drop(user, ['s3:GetObject'])
    assert not grant.success
    assert grant.dependables == []


def test_combine(stack, user):
    topic = Topic('Topic', **opts(parent=stack))
    bucket = Bucket('Bucket', **opts(parent=stack))
    a = topic.grant_publish(user)
    b = bucket.grant_put(ServicePrincipal('logging.s3.amazonaws.com'))
    combined = a.combine(b)

    assert combined.principal_statement_added and combined.resource_statement_added
    assert combined.dependables == [user.default_policy, bucket.policy]
    assert combined.assert_success() is combined


def test_apply_before(stack):
    bucket = Bucket('Bucket', **opts(parent=stack))
    consumer = Consumer('Consumer', **opts(parent=stack))
    grant = bucket.grant_read(ServicePrincipal('cloudfront.amazonaws.com'))

    grant.apply_before(consumer)
    grant.apply_before(consumer)
    assert stack.tree.dependencies_of(consumer) == ['Stack/Bucket/Policy']


def test_apply_before_other_stack(stack, other_stack):
    bucket = Bucket('Bucket', **opts(parent=stack))
    consumer = Consumer('Consumer', **opts(parent=other_stack))
    grant = bucket.grant_read(ServicePrincipal('cloudfront.amazonaws.com'))

    grant.apply_before(consumer)
    assert stack.tree.edges == []


def test_principal_and_resource(app, stack, role):
    key = Key('Key', **opts(parent=stack))
    grant = Grant.add_to_principal_and_resource(
        role, ['kms:Decrypt'], [key.arn], key, resource_self_arns=['*'],
    )

    assert grant.principal_statement_added and grant.resource_statement_added
    assert statements(app, 'Stack/Key/Policy') == [{
        'Effect': 'Allow',
        'Action': 'kms:Decrypt',
        'Principal': {'AWS': role.arn.expression()},
        'Resource': '*',
    }]


def test_pass_role(app, stack, role, user):
    role.grant_pass_role(user)
    assert statements(app, 'Stack/User/DefaultPolicy') == [{
        'Effect': 'Allow',
        'Action': 'iam:PassRole',
        'Resource': role.arn.expression(),
    }]
