"""
A handful of AWS resource constructs.

These only carry what the policy machinery needs (ARNs, names, encryption
keys and the grantX() methods); everything else about the real resources
is up to whoever emits them.
"""
import os
import re

import pulumi

from cutils.component import Construct, Stack, component, opts
from cutils.deferred import Deferred, Lookup, Pseudo, Reference

from .binder import ResourcePolicyBinder, IdentityPolicyBinder, TrustPolicyBinder
from .errors import NoRegionError, ValidationError
from .grant import Grant
from .principals import (
    PARTITION, AddToResourcePolicyResult, AccountPrincipal, ArnPrincipal, PrincipalBase,
    ServicePrincipal,
)
from .statement import PolicyStatement

__all__ = (
    'get_region', 'AwsStack', 'CallerIdentity', 'PartitionInfo', 'RegionInfo',
    'ServicePrincipalName', 'Bucket', 'Topic', 'Queue', 'Key', 'Role', 'User',
    'LoadBalancer', 'ELB_ACCOUNTS',
)

BUCKET_READ_ACTIONS = ['s3:GetObject*', 's3:GetBucket*', 's3:List*']
BUCKET_PUT_ACTIONS = [
    's3:PutObject',
    's3:PutObjectLegalHold',
    's3:PutObjectRetention',
    's3:PutObjectTagging',
    's3:PutObjectVersionTagging',
    's3:Abort*',
]
BUCKET_WRITE_ACTIONS = ['s3:DeleteObject*', *BUCKET_PUT_ACTIONS]

KEY_READ_ACTIONS = ['kms:Decrypt', 'kms:DescribeKey']
KEY_ENCRYPT_ACTIONS = ['kms:Encrypt', 'kms:ReEncrypt*', 'kms:GenerateDataKey*']
KEY_WRITE_ACTIONS = [*KEY_ENCRYPT_ACTIONS, 'kms:Decrypt']

QUEUE_SEND_ACTIONS = ['sqs:SendMessage', 'sqs:GetQueueAttributes', 'sqs:GetQueueUrl']
QUEUE_CONSUME_ACTIONS = [
    'sqs:ReceiveMessage',
    'sqs:ChangeMessageVisibility',
    'sqs:GetQueueUrl',
    'sqs:DeleteMessage',
    'sqs:GetQueueAttributes',
]
QUEUE_PURGE_ACTIONS = ['sqs:PurgeQueue', 'sqs:GetQueueAttributes', 'sqs:GetQueueUrl']

# Accounts Elastic Load Balancing writes access logs from
# https://docs.aws.amazon.com/elasticloadbalancing/latest/application/enable-access-logging.html
ELB_ACCOUNTS = {
    'us-east-1': '127311923021',
    'us-east-2': '033677994240',
    'us-west-1': '027434742980',
    'us-west-2': '797873946194',
    'af-south-1': '098369216593',
    'ca-central-1': '985666609251',
    'eu-central-1': '054676820928',
    'eu-west-1': '156460612806',
    'eu-west-2': '652711504416',
    'eu-south-1': '635631232127',
    'eu-west-3': '009996457667',
    'eu-north-1': '897822967062',
    'ap-east-1': '754344448648',
    'ap-northeast-1': '582318560864',
    'ap-northeast-2': '600734575887',
    'ap-northeast-3': '383597477331',
    'ap-southeast-1': '114774131450',
    'ap-southeast-2': '783225319266',
    'ap-south-1': '718504428378',
    'me-south-1': '076674570225',
    'sa-east-1': '507241528517',
    'us-gov-west-1': '048591011584',
    'us-gov-east-1': '190560391635',
    'cn-north-1': '638102146993',
    'cn-northwest-1': '037604701340',
}

LOG_DELIVERY_SERVICE = 'delivery.logs.amazonaws.com'


# Service principals given as "<service>.<partition domain>" are looked up by
# their bare service name
SERVICE_NAME_RE = re.compile(
    r'^([^.]+)(?:(?:\.amazonaws\.com(?:\.cn)?)|(?:\.c2s\.ic\.gov)|(?:\.sc2s\.sgov\.gov))?$'
)


def get_region(stack):
    """
    Gets the AWS region for a given stack.
    """
    config = pulumi.Config("aws").get('region')
    if getattr(stack, 'explicit_region', None):
        return stack.explicit_region
    # Same order pulumi-aws uses
    elif config:
        return config
    elif 'AWS_REGION' in os.environ:
        return os.environ['AWS_REGION']
    elif 'AWS_DEFAULT_REGION' in os.environ:
        return os.environ['AWS_DEFAULT_REGION']
    else:
        raise NoRegionError("Unable to determine AWS Region", stack)


@component('iamsynth:aws:CallerIdentity', resource_type='data.aws_caller_identity')
def CallerIdentity(self, name, *, __opts__):
    """
    The account and identity the stack is deployed with.
    """
    return {
        'account_id': Reference(self, 'account_id'),
    }


@component('iamsynth:aws:PartitionInfo', resource_type='data.aws_partition')
def PartitionInfo(self, name, *, __opts__):
    """
    The partition (aws, aws-cn, aws-us-gov, ...) the stack is deployed to.
    """
    return {
        'partition': Reference(self, 'partition'),
        'dns_suffix': Reference(self, 'dns_suffix'),
    }


@component('iamsynth:aws:RegionInfo', resource_type='data.aws_region')
def RegionInfo(self, name, *, __opts__):
    """
    The region of the provider, for stacks that don't name one.
    """
    return {
        'region_name': Reference(self, 'name'),
    }


@component('iamsynth:aws:ServicePrincipalName', resource_type='data.aws_service_principal')
def ServicePrincipalName(self, name, *, service_name, region=None, __opts__):
    """
    The principal name of an AWS service, which used to differ between
    partitions for some services.
    """
    return {
        'service_name': service_name,
        'region': region,
        'principal_name': Reference(self, 'name'),
    }


class AwsStack(Stack):
    """
    A stack deployed to one account and region.

    Account, partition and (when not configured) region are looked up by the
    stack itself, so values built from them render correctly in whichever
    stack they end up in.
    """
    __namespace__ = 'iamsynth:aws:Stack'

    def set_up(self, name, *, region=None, __opts__):
        super().set_up(name, __opts__=__opts__)
        self.explicit_region = region
        self.caller_identity = CallerIdentity('CallerIdentity', **opts(parent=self))
        self._partition_info = None
        self._region_info = None
        self._service_principals = {}

    @property
    def region(self):
        return get_region(self)

    @property
    def account(self):
        return Pseudo('account', self)

    @property
    def partition(self):
        return Pseudo('partition', self)

    @property
    def url_suffix(self):
        return Pseudo('url_suffix', self)

    @property
    def partition_info(self):
        if self._partition_info is None:
            self._partition_info = PartitionInfo('Partition', **opts(parent=self))
        return self._partition_info

    @property
    def region_info(self):
        if self._region_info is None:
            self._region_info = RegionInfo('Region', **opts(parent=self))
        return self._region_info

    def pseudo(self, name):
        if name == 'account':
            return self.caller_identity.account_id
        elif name == 'partition':
            return self.partition_info.partition
        elif name == 'url_suffix':
            return self.partition_info.dns_suffix
        elif name == 'region':
            try:
                return get_region(self)
            except NoRegionError:
                return self.region_info.region_name
        return None

    def regional_fact(self, fact_name, table):
        """
        The value of a per-region fact for this stack.

        With a known region this is the plain value. Otherwise it's looked up
        in `table` at deploy time, keyed by the region the stack runs in.
        """
        try:
            region = get_region(self)
        except NoRegionError:
            map_name = f"{fact_name[:1].upper()}{fact_name[1:]}Map"
            pulumi.debug(f"Region of {self.name} unknown, looking {fact_name} up in {map_name}")
            return Lookup(map_name, table, Pseudo('region', self))
        if region not in table:
            raise ValidationError(f"Don't know {fact_name} for region {region}", self)
        return table[region]

    def service_principal_name(self, service, region=None):
        """
        The principal name of an AWS service, looked up by the stack.
        """
        if isinstance(region, Deferred):
            raise ValidationError(
                "Cannot determine the service principal name for a region only known "
                "at deploy time; give the region explicitly",
                self,
            )
        match = SERVICE_NAME_RE.match(service)
        service_name = match.group(1) if match else service
        key = (region or 'default_region', service_name)
        if key not in self._service_principals:
            name = "aws_svcp_{}_{}".format(
                re.sub(r'[^A-Za-z0-9]', '_', key[0]),
                re.sub(r'[^A-Za-z0-9]', '', service_name),
            )
            self._service_principals[key] = ServicePrincipalName(
                name, service_name=service_name, region=region, **opts(parent=self),
            )
        return self._service_principals[key].principal_name


class Resource(Construct):
    """
    Base for resources that can have a resource-based policy.
    """
    __namespace__ = 'iamsynth:aws:Resource'
    policy_type = None
    policy_target = 'arn'
    assign_sids = False
    encryption_key = None
    auto_create_policy = True

    @property
    def policy(self):
        """
        The policy attachment, once something was granted on the resource.
        """
        binder = self._policy_binder(create=False)
        return binder.attachment if binder is not None else None

    @property
    def policy_target_value(self):
        """
        What the policy attachment points at.
        """
        return Reference(self, self.policy_target)

    def _policy_binder(self, create=True):
        for binder in self.tree.binders:
            if binder.owner is self and binder.kind == ResourcePolicyBinder.kind:
                return binder
        if not create:
            return None
        return ResourcePolicyBinder(
            self, self.policy_type,
            target=self.policy_target_value,
            assign_sids=self.assign_sids,
        )

    def attach_policy(self):
        """
        Give the resource a policy now, including resources that don't get
        one on their own (e.g. imported ones). Returns the attachment.
        """
        return self._policy_binder().attach()

    def add_to_resource_policy(self, statement):
        if not self.auto_create_policy and self._policy_binder(create=False) is None:
            return AddToResourcePolicyResult(statement_added=False)
        return self._policy_binder().add_to_resource_policy(statement)

    def _grant(self, grantee, actions, resource_arns, key_actions=()):
        return Grant.add_to_principal_or_resource(
            grantee, actions, resource_arns, self,
            resource_self_arns=resource_arns,
            key_actions=key_actions,
        )


class Bucket(Resource):
    __namespace__ = 'iamsynth:aws:Bucket'
    resource_type = 'aws_s3_bucket'
    policy_type = 'aws_s3_bucket_policy'
    policy_target = 'bucket'

    def set_up(self, name, *, encryption_key=None, imported_name=None, __opts__):
        Stack.of(self)
        self.encryption_key = encryption_key
        if imported_name is None:
            self.arn = Reference(self, 'arn')
            self.bucket_name = Reference(self, 'bucket')
        else:
            # Not ours: no policy unless attach_policy() is called
            self.auto_create_policy = False
            self.arn = Deferred.concat('arn:', PARTITION, ':s3:::', imported_name)
            self.bucket_name = imported_name

    @classmethod
    def from_bucket_name(cls, scope, name, bucket_name):
        return cls(name, imported_name=bucket_name, **opts(parent=scope))

    @property
    def policy_target_value(self):
        return self.bucket_name

    def arn_for_objects(self, *key_pattern):
        return Deferred.concat(self.arn, '/', *key_pattern)

    def grant_read(self, grantee, objects_key_pattern='*'):
        return self._grant(
            grantee, BUCKET_READ_ACTIONS,
            [self.arn, self.arn_for_objects(objects_key_pattern)],
            key_actions=['kms:Decrypt'],
        )

    def grant_write(self, grantee, objects_key_pattern='*'):
        return self._grant(
            grantee, BUCKET_WRITE_ACTIONS,
            [self.arn, self.arn_for_objects(objects_key_pattern)],
            key_actions=KEY_WRITE_ACTIONS,
        )

    def grant_put(self, grantee, objects_key_pattern='*'):
        return self._grant(
            grantee, BUCKET_PUT_ACTIONS,
            [self.arn_for_objects(objects_key_pattern)],
            key_actions=KEY_WRITE_ACTIONS,
        )

    def grant_read_write(self, grantee, objects_key_pattern='*'):
        return self._grant(
            grantee, BUCKET_READ_ACTIONS + BUCKET_WRITE_ACTIONS,
            [self.arn, self.arn_for_objects(objects_key_pattern)],
            key_actions=KEY_WRITE_ACTIONS,
        )


class Topic(Resource):
    __namespace__ = 'iamsynth:aws:Topic'
    resource_type = 'aws_sns_topic'
    policy_type = 'aws_sns_topic_policy'
    assign_sids = True

    def set_up(self, name, *, master_key=None, __opts__):
        Stack.of(self)
        self.master_key = master_key
        self.encryption_key = master_key
        self.arn = Reference(self, 'arn')

    def grant_publish(self, grantee):
        return self._grant(
            grantee, ['sns:Publish'], [self.arn],
            key_actions=['kms:Decrypt', 'kms:GenerateDataKey*'],
        )

    def grant_subscribe(self, grantee):
        return self._grant(grantee, ['sns:Subscribe'], [self.arn])


class Queue(Resource):
    __namespace__ = 'iamsynth:aws:Queue'
    resource_type = 'aws_sqs_queue'
    policy_type = 'aws_sqs_queue_policy'
    policy_target = 'url'

    def set_up(self, name, *, encryption_key=None, __opts__):
        Stack.of(self)
        self.encryption_key = encryption_key
        self.arn = Reference(self, 'arn')
        self.queue_url = Reference(self, 'url')

    def grant_send_messages(self, grantee):
        return self._grant(
            grantee, QUEUE_SEND_ACTIONS, [self.arn],
            key_actions=['kms:Decrypt', *KEY_ENCRYPT_ACTIONS],
        )

    def grant_consume_messages(self, grantee):
        return self._grant(
            grantee, QUEUE_CONSUME_ACTIONS, [self.arn],
            key_actions=['kms:Decrypt'],
        )

    def grant_purge(self, grantee):
        return self._grant(grantee, QUEUE_PURGE_ACTIONS, [self.arn])


class Key(Resource):
    """
    A customer managed KMS key.

    Statements in a key policy always apply to the key itself, so they use
    "*" as their resource.
    """
    __namespace__ = 'iamsynth:aws:Key'
    resource_type = 'aws_kms_key'
    policy_type = 'aws_kms_key_policy'
    policy_target = 'key_id'

    def set_up(self, name, *, __opts__):
        Stack.of(self)
        self.arn = Reference(self, 'arn')
        self.key_id = Reference(self, 'key_id')

    def grant(self, grantee, *actions):
        return Grant.add_to_principal_or_resource(
            grantee, list(actions), [self.arn], self,
            resource_self_arns=['*'],
        )

    def grant_decrypt(self, grantee):
        return self.grant(grantee, *KEY_READ_ACTIONS)

    def grant_encrypt(self, grantee):
        return self.grant(grantee, *KEY_ENCRYPT_ACTIONS)

    def grant_encrypt_decrypt(self, grantee):
        return self.grant(grantee, *KEY_WRITE_ACTIONS)


class IdentityPrincipal(PrincipalBase):
    """
    Principals that have a policy of their own. Statements granted to them
    go there, never on the resource.
    """
    identity_policy_type = None

    @property
    def policy_fragment(self):
        return ArnPrincipal(self.arn).policy_fragment

    @property
    def principal_account(self):
        return Stack.of(self).account

    @property
    def default_policy(self):
        for binder in self.tree.binders:
            if binder.owner is self and binder.kind == IdentityPolicyBinder.kind:
                return binder.attachment
        return None

    def add_to_principal_policy(self, statement):
        binder = IdentityPolicyBinder.of(self, self.identity_policy_type, target_attribute='name')
        return binder.add_to_principal_policy(statement)


class Role(Construct, IdentityPrincipal):
    __namespace__ = 'iamsynth:aws:Role'
    resource_type = 'aws_iam_role'
    identity_policy_type = 'aws_iam_role_policy'

    def set_up(self, name, *, assumed_by, __opts__):
        Stack.of(self)
        self.arn = Reference(self, 'arn')
        self.role_name = Reference(self, 'name')
        self.assumed_by = assumed_by
        self._trust = TrustPolicyBinder(self, 'aws_iam_role_assume_role_policy', target_attribute='name')
        self._trust.add_to_trust_policy(
            PolicyStatement(actions=[assumed_by.assume_role_action], principals=[assumed_by]),
        )

    @property
    def assume_role_policy(self):
        return self._trust.document

    def add_to_assume_role_policy(self, statement):
        return self._trust.add_to_trust_policy(statement)

    def grant_pass_role(self, grantee):
        return Grant.add_to_principal(grantee, ['iam:PassRole'], [self.arn], scope=self)


class User(Construct, IdentityPrincipal):
    __namespace__ = 'iamsynth:aws:User'
    resource_type = 'aws_iam_user'
    identity_policy_type = 'aws_iam_user_policy'

    def set_up(self, name, *, __opts__):
        Stack.of(self)
        self.arn = Reference(self, 'arn')
        self.user_name = Reference(self, 'name')


class LoadBalancer(Construct):
    __namespace__ = 'iamsynth:aws:LoadBalancer'
    resource_type = 'aws_lb'

    def set_up(self, name, *, __opts__):
        Stack.of(self)
        self.arn = Reference(self, 'arn')
        self.access_logs = None

    def log_access_logs(self, bucket, prefix=None):
        """
        Enable access logging into the given bucket.

        The bucket policy has to let the regional ELB account and the log
        delivery service write, and the load balancer waits for that policy
        unless the bucket lives inside the load balancer itself.
        """
        stack = Stack.of(self)
        elb_account = stack.regional_fact('elbAccount', ELB_ACCOUNTS)
        log_delivery = ServicePrincipal(Stack.of(bucket).service_principal_name(LOG_DELIVERY_SERVICE))

        prefix_path = f"{prefix}/" if prefix else ''
        objects = bucket.arn_for_objects(prefix_path, 'AWSLogs/', stack.account, '/*')
        statements = [
            PolicyStatement(
                actions=['s3:PutObject'],
                principals=[AccountPrincipal(elb_account)],
                resources=[objects],
            ),
            PolicyStatement(
                actions=['s3:PutObject'],
                principals=[log_delivery],
                resources=[objects],
                conditions={'StringEquals': {'s3:x-amz-acl': 'bucket-owner-full-control'}},
            ),
            PolicyStatement(
                actions=['s3:GetBucketAcl'],
                principals=[log_delivery],
                resources=[bucket.arn],
            ),
        ]
        for statement in statements:
            result = bucket.add_to_resource_policy(statement)
            if result.policy_dependable is not None:
                result.policy_dependable.binder.depend_on_policy(self)

        self.access_logs = {
            'bucket': bucket.bucket_name,
            'enabled': True,
        }
        if prefix:
            self.access_logs['prefix'] = prefix
        pulumi.debug(f"Access logs of {self.path} go to {bucket.path}")
