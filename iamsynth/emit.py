"""
Turning finalized policies into Pulumi resources.

The policy documents themselves are produced by synthesize(); this maps each
attachment to the pulumi_aws resource that carries it and swaps the deferred
references inside the documents for the attributes of real Pulumi resources.
"""
import pulumi
from pulumi_aws import (
    iam, kms, s3, sns, sqs,
    get_caller_identity_output, get_partition_output, get_region_output,
    get_service_principal_output,
)

from cutils.deferred import resolve_value

from .binder import TrustPolicyBinder
from .crossstack import CrossStackContext, stack_of
from .errors import ValidationError
from .synth import synthesize
from . import config

__all__ = (
    'POLICY_RESOURCES', 'DATA_SOURCES', 'PolicyPlan', 'PulumiContext', 'plan_policies',
    'assume_role_policy', 'emit',
)

# attachment type -> (resource class, argument naming the owner)
POLICY_RESOURCES = {
    'aws_s3_bucket_policy': (s3.BucketPolicy, 'bucket'),
    'aws_sns_topic_policy': (sns.TopicPolicy, 'arn'),
    'aws_sqs_queue_policy': (sqs.QueuePolicy, 'queue_url'),
    'aws_kms_key_policy': (kms.KeyPolicy, 'key_id'),
    'aws_iam_role_policy': (iam.RolePolicy, 'role'),
    'aws_iam_user_policy': (iam.UserPolicy, 'user'),
}

# data source type -> invoke giving its attributes
DATA_SOURCES = {
    'data.aws_caller_identity': lambda construct: get_caller_identity_output(),
    'data.aws_partition': lambda construct: get_partition_output(),
    'data.aws_region': lambda construct: get_region_output(),
    'data.aws_service_principal': lambda construct: get_service_principal_output(
        service_name=construct.service_name, region=construct.region,
    ),
}


class PolicyPlan:
    """
    One policy resource to be created.
    """
    def __init__(self, binder, resource_class, target_arg):
        self.binder = binder
        self.resource_class = resource_class
        self.target_arg = target_arg

    def __repr__(self):
        return f"<PolicyPlan {self.resource_class.__name__} {self.path}>"

    @property
    def attachment(self):
        return self.binder.attachment

    @property
    def path(self):
        return self.attachment.path

    @property
    def name(self):
        return self.attachment.logical_id

    @property
    def owner(self):
        return self.binder.owner


def plan_policies(stack):
    """
    Work out which policy resources a stack needs, finalizing the app first
    if that hasn't happened yet.
    """
    tree = stack.tree
    synthesize(tree.get(''))
    plans = []
    for binder in tree.binders:
        if binder.rendered is None or binder.attachment.stack is not stack:
            continue
        if binder.kind == TrustPolicyBinder.kind:
            # Part of the role itself, see assume_role_policy()
            continue
        try:
            resource_class, target_arg = POLICY_RESOURCES[binder.attachment_type]
        except KeyError:
            raise ValidationError(
                f"Don't know how to emit a {binder.attachment_type}", binder.attachment,
            ) from None
        plans.append(PolicyPlan(binder, resource_class, target_arg))
    return plans


class PulumiContext(CrossStackContext):
    """
    Resolves deferred values into Pulumi inputs for one stack.

    `resources` maps construct paths to the Pulumi resources standing in for
    them; values from other stacks are read through StackReferences.
    """
    def __init__(self, stack, resolver, resources):
        super().__init__(stack, resolver)
        self.resources = resources
        self.stack_references = {}
        self.data_sources = {}

    def stack_reference(self, producer):
        if producer.path not in self.stack_references:
            name = f"{config.stack_reference_prefix()}{producer.name}"
            self.stack_references[producer.path] = pulumi.StackReference(name)
        return self.stack_references[producer.path]

    def _remote(self, leaf):
        producer = stack_of(leaf.owner) if leaf.owner is not None else None
        if producer is None or self.stack is None or producer is self.stack:
            return None
        ref = self.resolver.resolve(leaf, producer, self.stack)
        return self.stack_reference(producer).get_output(ref.output_key)

    def reference(self, ref):
        remote = self._remote(ref)
        if remote is not None:
            return remote
        invoke = DATA_SOURCES.get(ref.construct.resource_type)
        if invoke is not None:
            if ref.construct.path not in self.data_sources:
                self.data_sources[ref.construct.path] = invoke(ref.construct)
            return getattr(self.data_sources[ref.construct.path], ref.attribute)
        try:
            resource = self.resources[ref.construct.path]
        except KeyError:
            raise ValidationError(
                f"No Pulumi resource given for {ref.construct.path}", ref.construct,
            ) from None
        return getattr(resource, ref.attribute)

    def lazy(self, lazy):
        remote = self._remote(lazy)
        if remote is not None:
            return remote
        return resolve_value(lazy.func(), self)

    def lookup(self, lookup):
        key = resolve_value(lookup.key, self)
        return pulumi.Output.from_input(key).apply(lambda resolved: lookup.table[resolved])

    def combine(self, values, func):
        return pulumi.Output.all(*values).apply(lambda resolved: func(*resolved))


def assume_role_policy(role, resources):
    """
    The trust policy of a role, as the assume_role_policy input of its
    aws.iam.Role.
    """
    stack = role.stack
    synthesize(stack.tree.get(''))
    binder = TrustPolicyBinder.of(role)
    context = PulumiContext(stack, stack.tree.resolver, resources)
    return pulumi.Output.json_dumps(binder.render(context))


def emit(stack, resources):
    """
    Create the policy resources of a stack and export its cross-stack outputs.

    Returns the created resources by attachment path, and a depends_on()
    helper giving the ResourceOptions.depends_on list for a construct.
    """
    plans = plan_policies(stack)
    context = PulumiContext(stack, stack.tree.resolver, resources)

    created = {}
    for plan in plans:
        document = plan.binder.render(context)
        target = resolve_value(plan.binder.target, context)
        created[plan.path] = plan.resource_class(
            plan.name,
            policy=pulumi.Output.json_dumps(document),
            opts=pulumi.ResourceOptions(parent=resources.get(plan.owner.path)),
            **{plan.target_arg: target},
        )
        pulumi.debug(f"Emitted {plan.resource_class.__name__} for {plan.owner.path}")

    for key, output in stack.outputs.items():
        pulumi.export(key, resolve_value(output.value, context))

    def depends_on(construct):
        return [
            created[path]
            for path in stack.tree.dependencies_of(construct)
            if path in created
        ]

    return created, depends_on
