import pytest

from cutils import Deferred, Reference, opts
from iamsynth import (
    CrossStackReferenceResolver, PolicyStatement, ServicePrincipal,
    UnresolvableCrossStackReference, synthesize,
)
from iamsynth.aws import AwsStack, Bucket, Topic, User


@pytest.fixture
def producer(app):
    return AwsStack('Producer', region='us-east-1', **opts(parent=app))


@pytest.fixture
def consumer(app):
    return AwsStack('Consumer', region='us-east-1', **opts(parent=app))


def user_statements(manifest):
    return manifest['Consumer']['policies']['Consumer/User/DefaultPolicy']['document']['Statement']


def test_reference_goes_through_remote_state(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    grant = topic.grant_publish(user)

    assert grant.best_effort_ordering
    manifest = synthesize(app)

    [key] = producer.outputs
    assert key.startswith('cross-stack-output-')
    assert manifest['Producer']['outputs'] == {key: topic.arn.expression()}
    assert manifest['Consumer']['remote_states'] == {
        'cross-stack-reference-input-Producer': 'Producer',
    }
    assert user_statements(manifest)[0]['Resource'] == \
        f"${{remote_state.cross-stack-reference-input-Producer.outputs.{key}}}"
    assert consumer.dependencies == [producer]


def test_same_grant_twice_shares_everything(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    topic.grant_publish(user)
    topic.grant_publish(user)

    manifest = synthesize(app)
    resolver = CrossStackReferenceResolver.of(app.tree)
    assert len(producer.outputs) == 1
    assert len(consumer.remote_states) == 1
    assert len(resolver.refs) == 1
    first, second = user_statements(manifest)
    assert first['Resource'] == second['Resource']


def test_one_remote_state_per_stack_pair(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    bucket = Bucket('Bucket', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    topic.grant_publish(user)
    bucket.grant_read(user)

    synthesize(app)
    # Topic ARN and bucket ARN; the object ARN is derived from the latter
    assert len(producer.outputs) == 2
    assert len(consumer.remote_states) == 1
    assert [c.name for c in consumer.children if c.name.startswith('cross-stack')] == [
        'cross-stack-reference-input-Producer',
    ]


def test_no_cross_stack_artifacts_within_a_stack(app, producer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=producer))
    topic.grant_publish(user)

    synthesize(app)
    assert producer.outputs == {}
    assert producer.remote_states == {}
    assert CrossStackReferenceResolver.of(app.tree).refs == []


def test_account_is_never_exported(app, producer, consumer):
    user = User('User', **opts(parent=consumer))
    user.add_to_policy(PolicyStatement(
        actions=['s3:GetObject'],
        resources=[Deferred.concat('arn:aws:s3:::logs-', producer.account, '/*')],
    ))

    manifest = synthesize(app)
    account = consumer.caller_identity.account_id.expression()
    assert user_statements(manifest)[0]['Resource'] == f"arn:aws:s3:::logs-{account}/*"
    assert producer.outputs == {}
    assert consumer.remote_states == {}


def test_keyed_lazy_values_are_exported(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    names = Deferred.lazy(lambda: 'topic-name', key='name', construct=topic)
    user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[names]))

    synthesize(app)
    [output] = producer.outputs.values()
    assert output.expression == 'topic-name'


def test_lazy_without_identity_fails(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    anonymous = Deferred.lazy(lambda: 'value', construct=topic)
    user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[anonymous]))

    with pytest.raises(UnresolvableCrossStackReference, match="no stable identity"):
        synthesize(app)


def test_lazy_depending_on_consumer_fails(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    backwards = Deferred.lazy(lambda: Reference(user, 'arn'), key='backwards', construct=topic)
    user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[backwards]))

    with pytest.raises(UnresolvableCrossStackReference, match="produced in stack 'Consumer'"):
        synthesize(app)


def test_resource_policy_mentioning_another_stack(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    topic.add_to_resource_policy(PolicyStatement(
        actions=['sns:Publish'],
        principals=[user],
        resources=[topic.arn],
    ))

    manifest = synthesize(app)
    [key] = consumer.outputs
    statement = manifest['Producer']['policies']['Producer/Topic/Policy']['document']['Statement'][0]
    assert statement['Principal'] == {
        'AWS': f"${{remote_state.cross-stack-reference-input-Consumer.outputs.{key}}}",
    }
    assert statement['Resource'] == topic.arn.expression()


def test_service_principal_grant_is_not_cross_stack(app, producer):
    topic = Topic('Topic', **opts(parent=producer))
    grant = topic.grant_publish(ServicePrincipal('events.amazonaws.com'))
    assert not grant.best_effort_ordering


def test_distinct_values_never_share_an_output(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    dotted = Deferred.lazy(lambda: 'value-A', key='name.x', construct=topic)
    underscored = Deferred.lazy(lambda: 'value-B', key='name_x', construct=topic)
    user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[dotted]))
    user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[underscored]))

    with pytest.raises(UnresolvableCrossStackReference, match="would both be exported"):
        synthesize(app)


def test_lazy_key_clashing_with_a_reference(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    topic.grant_publish(user)
    impostor = Deferred.lazy(lambda: 'not-the-arn', key='aws_sns_topic-arn', construct=topic)
    user.add_to_policy(PolicyStatement(actions=['sns:Subscribe'], resources=[impostor]))

    with pytest.raises(UnresolvableCrossStackReference, match="would both be exported"):
        synthesize(app)


def test_equal_values_share_an_output(app, producer, consumer):
    topic = Topic('Topic', **opts(parent=producer))
    user = User('User', **opts(parent=consumer))
    for _ in range(2):
        name = Deferred.lazy(lambda: 'topic-name', key='name.x', construct=topic)
        user.add_to_policy(PolicyStatement(actions=['sns:Publish'], resources=[name]))

    synthesize(app)
    assert list(producer.outputs) == [f"cross-stack-output-{topic.logical_id}-name_x"]
